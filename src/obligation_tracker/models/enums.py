"""
Модуль перечислений (enums) для Obligation Tracker.

Содержит все Enum классы, используемые в моделях данных и движке сверки.
"""

from enum import Enum


class TransactionType(str, Enum):
    """
    Направление денежного потока обязательства.

    Attributes:
        INCOME: Ожидаемое поступление (зарплата, аренда к получению)
        EXPENSE: Обязательный платёж (счёт, подписка, кредит)
    """
    INCOME = "income"
    EXPENSE = "expense"


class Frequency(str, Enum):
    """
    Частота повторения обязательства.

    Attributes:
        WEEKLY: Каждые 7 дней
        BIWEEKLY: Каждые 14 дней
        SEMIMONTHLY: Каждые 15 дней
        MONTHLY: Каждый календарный месяц
        QUARTERLY: Каждые 3 месяца
        ANNUAL: Каждый год
    """
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMIMONTHLY = "semimonthly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class PeriodGranularity(str, Enum):
    """
    Гранулярность календарного разбиения (одно из трёх представлений).

    Attributes:
        MONTHLY: Календарный месяц
        WEEKLY: Неделя с воскресенья по субботу
        BI_MONTHLY: Половина месяца (1-15 и 16-конец месяца)
    """
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    BI_MONTHLY = "bi_monthly"


class OutflowPeriodStatus(str, Enum):
    """
    Статус периода для обязательного платежа.

    Attributes:
        PAID: Оплачено полностью
        PAID_EARLY: Оплачено до наступления сроков
        OVERDUE: Есть просроченное вхождение
        PARTIAL: Оплачена часть вхождений
        DUE_SOON: Срок оплаты в ближайшие дни
        PENDING: Ожидает оплаты
    """
    PAID = "paid"
    PAID_EARLY = "paid_early"
    OVERDUE = "overdue"
    PARTIAL = "partial"
    DUE_SOON = "due_soon"
    PENDING = "pending"


class InflowPeriodStatus(str, Enum):
    """
    Статус периода для ожидаемого поступления.

    Attributes:
        RECEIVED: Получено полностью
        PARTIAL: Получена часть вхождений
        OVERDUE: Поступление задерживается
        PENDING: Ожидается
        NOT_EXPECTED: В периоде поступлений не ожидается
    """
    RECEIVED = "received"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PENDING = "pending"
    NOT_EXPECTED = "not_expected"


class PaymentType(str, Enum):
    """
    Классификация платежа относительно сопоставленного вхождения.

    Attributes:
        REGULAR: Обычный платёж в срок
        ADVANCE: Авансовый платёж (более чем за 7 дней до срока)
        CATCH_UP: Погашение после наступления срока
        EXTRA_PRINCIPAL: Сверхплатёж (сумма превышает ожидаемую более чем на 10%)
    """
    REGULAR = "regular"
    ADVANCE = "advance"
    CATCH_UP = "catch_up"
    EXTRA_PRINCIPAL = "extra_principal"


class ObligationEventKind(str, Enum):
    """
    Тип события, обрабатываемого координатором.

    Attributes:
        TRANSACTION_ADDED: К обязательству привязана транзакция
        TRANSACTION_REMOVED: Транзакция отвязана от обязательства
        OBLIGATION_EDITED: Изменено определение обязательства
        WINDOW_CREATED: Появилось новое окно периода
    """
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_REMOVED = "transaction_removed"
    OBLIGATION_EDITED = "obligation_edited"
    WINDOW_CREATED = "window_created"


class RecordChangeKind(str, Enum):
    """
    Происхождение изменения записи периода (для защиты от циклов).

    Attributes:
        NONE: Изменений нет
        INTERNAL: Изменены только поля, принадлежащие движку (сопоставление, итоги, статус)
        DEFINITION: Изменены поля проекции обязательства (название, сумма, даты вхождений)
        ASSOCIATION: Изменены поля ручной привязки транзакций
    """
    NONE = "none"
    INTERNAL = "internal"
    DEFINITION = "definition"
    ASSOCIATION = "association"
