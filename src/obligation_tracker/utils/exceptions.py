"""
Модуль пользовательских исключений приложения.
"""

class ObligationTrackerError(Exception):
    """Базовый класс для всех исключений приложения."""
    pass

class ValidationError(ObligationTrackerError):
    """Исключение при ошибке валидации данных (пользовательский ввод)."""
    pass

class BusinessLogicError(ObligationTrackerError):
    """Исключение при нарушении бизнес-правил (например, повторная привязка транзакции)."""
    pass

class DatabaseError(ObligationTrackerError):
    """Исключение при ошибках работы с базой данных."""
    pass

class ObligationNotFoundError(ObligationTrackerError):
    """Исключение когда обязательство не найдено."""
    pass

class InvalidObligationError(ValidationError):
    """Обязательство без частоты или опорной даты. Фатально, не повторяется."""
    pass

class WindowNotFoundError(ObligationTrackerError):
    """Окно периода (или запись периода) отсутствует в каталоге."""
    pass

class NoMatchingOccurrenceError(ObligationTrackerError):
    """Транзакцию не удалось сопоставить ни с одним вхождением в пределах допуска."""

    def __init__(self, transaction_id: str, record_id: str, reason: str = ""):
        self.transaction_id = transaction_id
        self.record_id = record_id
        self.reason = reason
        message = f"Транзакция {transaction_id} не сопоставлена с записью периода {record_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

class CommitConflictError(DatabaseError):
    """Атомарная фиксация пакета записей не удалась (конкурентная запись)."""
    pass
