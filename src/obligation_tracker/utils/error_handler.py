"""
Модуль централизованной обработки ошибок.
Предоставляет инструменты для перехвата и логирования некритичных ошибок
пересчёта (статусы, согласованность), которые не должны откатывать
вызвавшую их запись.
"""

import functools
import logging
import traceback
from typing import Any, Callable, Optional

from obligation_tracker.utils.exceptions import (
    ValidationError,
    BusinessLogicError,
    DatabaseError,
    NoMatchingOccurrenceError,
)

logger = logging.getLogger(__name__)

class ErrorHandler:
    """
    Класс для централизованной обработки ошибок.
    """

    def handle(self, exception: Exception, context_message: str = "") -> str:
        """
        Обрабатывает возникшее исключение: логирует и возвращает сообщение для пользователя.

        Args:
            exception: Исключение, которое нужно обработать.
            context_message: Дополнительное сообщение о контексте ошибки.

        Returns:
            Понятное пользователю сообщение об ошибке
        """
        log_message = f"{context_message}: {str(exception)}" if context_message else str(exception)

        if isinstance(exception, (ValidationError, BusinessLogicError, NoMatchingOccurrenceError)):
            logger.warning(f"User error: {log_message}")
        else:
            logger.error(f"System error: {log_message}\n{traceback.format_exc()}")

        return self._get_user_message(exception)

    def _get_user_message(self, exception: Exception) -> str:
        """Возвращает понятное пользователю сообщение об ошибке."""
        if isinstance(exception, ValidationError):
            return f"Ошибка ввода: {str(exception)}"
        elif isinstance(exception, BusinessLogicError):
            return f"Невозможно выполнить операцию: {str(exception)}"
        elif isinstance(exception, DatabaseError):
            return "Произошла ошибка при работе с базой данных. Попробуйте позже."
        else:
            return f"Произошла непредвиденная ошибка: {str(exception)}"


def safe_handler(default: Any = None, context: Optional[str] = None):
    """
    Декоратор для некритичных операций пересчёта.
    Перехватывает ошибки, передаёт их в ErrorHandler и возвращает default.

    Args:
        default: Значение, возвращаемое при ошибке.
        context: Описание операции для лога (по умолчанию имя функции).
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                ErrorHandler().handle(e, context_message=context or f"Error in {func.__name__}")
                return default
        return wrapper
    return decorator
