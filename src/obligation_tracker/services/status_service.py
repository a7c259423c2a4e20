"""
Сервис расчёта статуса периода.

Содержит функции для:
- Расчёта статуса записи периода по таблице приоритетов
- Пересчёта итоговых полей записи из полных массивов вхождений
- Разбивки оплаченной суммы по типам платежей
- Текстовых статусов вхождений и процентов прогресса

Все функции чистые: принимают PeriodRecord и опорную дату "сейчас",
не обращаются к БД.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Union

from obligation_tracker.config import settings
from obligation_tracker.models import (
    PeriodRecord,
    PaymentBreakdown,
    PaymentType,
    OutflowPeriodStatus,
    InflowPeriodStatus,
)
from obligation_tracker.utils.error_handler import safe_handler
from obligation_tracker.utils.money import ZERO, to_money, sum_money

# Настройка логирования
logger = logging.getLogger(__name__)

PeriodStatus = Union[OutflowPeriodStatus, InflowPeriodStatus]

_BREAKDOWN_FIELDS = {
    PaymentType.REGULAR: "regular",
    PaymentType.ADVANCE: "advance",
    PaymentType.CATCH_UP: "catch_up",
    PaymentType.EXTRA_PRINCIPAL: "extra_principal",
}


def as_date(now: Union[date, datetime, None]) -> date:
    """Приводит "сейчас" к дате (None - сегодняшняя дата)."""
    if now is None:
        return date.today()
    if isinstance(now, datetime):
        return now.date()
    return now


def _paid_count(record: PeriodRecord) -> int:
    return sum(1 for flag in record.occurrence_paid_flags if flag)


def _unpaid_due_dates(record: PeriodRecord) -> List[date]:
    return [
        due for due, paid in zip(record.occurrence_due_dates, record.occurrence_paid_flags)
        if not paid
    ]


def _has_overdue(record: PeriodRecord, today: date) -> bool:
    grace = timedelta(days=settings.grace_period_days)
    return any(due + grace < today for due in _unpaid_due_dates(record))


def calculate_payment_breakdown(record: PeriodRecord) -> PaymentBreakdown:
    """
    Разбивает оплаченную сумму периода по типам платежей.

    Для поступлений тип платежа не хранится, вся сумма считается обычной.

    Returns:
        PaymentBreakdown с суммами regular/advance/catch_up/extra_principal
    """
    totals: Dict[str, Decimal] = {name: ZERO for name in _BREAKDOWN_FIELDS.values()}
    for paid, amount, payment_type in zip(
        record.occurrence_paid_flags,
        record.occurrence_amounts,
        record.occurrence_payment_types,
    ):
        if not paid:
            continue
        field = _BREAKDOWN_FIELDS.get(payment_type, "regular")
        totals[field] = to_money(totals[field] + amount)
    return PaymentBreakdown(**totals)


def calculate_total_paid_excluding_extra(record: PeriodRecord) -> Decimal:
    """Оплаченная сумма без сверхплатежей (EXTRA_PRINCIPAL)."""
    return calculate_payment_breakdown(record).total_excluding_extra


def derive_outflow_status(record: PeriodRecord, now: Union[date, datetime, None] = None) -> OutflowPeriodStatus:
    """
    Статус периода обязательного платежа.

    Приоритет (первое совпадение):
    1. Неактивно или нет вхождений -> PENDING (сумма к оплате 0)
    2. Оплачено (сумма без сверхплатежей >= ожидаемой) -> PAID,
       PAID_EARLY если все оплаченные вхождения ещё в будущем
    3. Есть неоплаченное вхождение со сроком + льготный день раньше "сейчас" -> OVERDUE
    4. Есть оплаченные вхождения -> PARTIAL
    5. Ближайший неоплаченный срок в пределах due_soon_days -> DUE_SOON
    6. Иначе -> PENDING
    """
    today = as_date(now)
    count = record.occurrence_count
    if not record.is_active or count == 0:
        return OutflowPeriodStatus.PENDING

    paid_count = _paid_count(record)
    amount_due = to_money(record.total_amount_due)
    if amount_due > 0:
        settled = calculate_total_paid_excluding_extra(record) >= amount_due
    else:
        settled = paid_count == count

    if settled:
        paid_dates = [
            due for due, paid in zip(record.occurrence_due_dates, record.occurrence_paid_flags)
            if paid
        ]
        if paid_dates and all(due > today for due in paid_dates):
            return OutflowPeriodStatus.PAID_EARLY
        return OutflowPeriodStatus.PAID

    if _has_overdue(record, today):
        return OutflowPeriodStatus.OVERDUE

    if paid_count > 0:
        return OutflowPeriodStatus.PARTIAL

    upcoming = [due for due in _unpaid_due_dates(record) if due >= today]
    if upcoming and (min(upcoming) - today).days <= settings.due_soon_days:
        return OutflowPeriodStatus.DUE_SOON

    return OutflowPeriodStatus.PENDING


def derive_inflow_status(record: PeriodRecord, now: Union[date, datetime, None] = None) -> InflowPeriodStatus:
    """
    Статус периода ожидаемого поступления.

    Приоритет: NOT_EXPECTED -> RECEIVED -> OVERDUE -> PARTIAL -> PENDING.
    """
    today = as_date(now)
    count = record.occurrence_count
    if not record.is_active or count == 0:
        return InflowPeriodStatus.NOT_EXPECTED

    paid_count = _paid_count(record)
    if paid_count >= count:
        return InflowPeriodStatus.RECEIVED

    if _has_overdue(record, today):
        return InflowPeriodStatus.OVERDUE

    if paid_count > 0:
        return InflowPeriodStatus.PARTIAL

    return InflowPeriodStatus.PENDING


def derive_status(record: PeriodRecord, now: Union[date, datetime, None] = None) -> PeriodStatus:
    """
    Рассчитывает статус записи периода.

    Args:
        record: Запись периода
        now: Опорная дата (по умолчанию сегодня)

    Returns:
        OutflowPeriodStatus для платежей, InflowPeriodStatus для поступлений

    Example:
        >>> derive_status(record, date(2025, 3, 10))
        <OutflowPeriodStatus.OVERDUE: 'overdue'>
    """
    if record.is_outflow:
        return derive_outflow_status(record, now)
    return derive_inflow_status(record, now)


@safe_handler(default=None, context="Ошибка пересчёта статуса периода")
def _safe_derive_status(record: PeriodRecord, now: Union[date, datetime, None]) -> Optional[PeriodStatus]:
    return derive_status(record, now)


def refresh_derived_fields(record: PeriodRecord, now: Union[date, datetime, None] = None) -> PeriodRecord:
    """
    Пересчитывает все производные поля записи из полных массивов вхождений.

    Источник истины - occurrence_transaction_ids: признак оплаты вхождения
    равен наличию транзакции, суммы и типы неоплаченных вхождений обнуляются.
    Итоги не наращиваются, а вычисляются заново, поэтому повторный вызов
    даёт тот же результат.

    Ошибка расчёта статуса не прерывает пересчёт: она логируется,
    а запись сохраняет прежний статус.

    Args:
        record: Запись периода
        now: Опорная дата

    Returns:
        Новая запись с пересчитанными итогами, признаками и статусом
    """
    transaction_ids = list(record.occurrence_transaction_ids)
    flags = [tid is not None for tid in transaction_ids]
    amounts = [
        to_money(amount) if paid else ZERO
        for amount, paid in zip(record.occurrence_amounts, flags)
    ]
    payment_types = [
        payment_type if paid else None
        for payment_type, paid in zip(record.occurrence_payment_types, flags)
    ]

    count = len(record.occurrence_due_dates)
    paid_count = sum(1 for flag in flags if flag)
    total_due = to_money(record.amount_per_occurrence * count)
    total_paid = sum_money(amounts)
    unpaid_dates = [due for due, paid in zip(record.occurrence_due_dates, flags) if not paid]

    updated = record.model_copy(update={
        "occurrence_count": count,
        "occurrence_paid_flags": flags,
        "occurrence_amounts": amounts,
        "occurrence_payment_types": payment_types,
        "occurrences_paid": paid_count,
        "total_amount_due": total_due,
        "total_amount_paid": total_paid,
        "total_amount_unpaid": max(ZERO, to_money(total_due - total_paid)),
        "total_amount_overpaid": max(ZERO, to_money(total_paid - total_due)),
        "is_fully_paid": count > 0 and paid_count == count,
        "is_partially_paid": 0 < paid_count < count,
        "next_unpaid_due_date": min(unpaid_dates) if unpaid_dates else None,
    })

    status = _safe_derive_status(updated, now)
    if status is None:
        logger.warning(
            f"Статус записи периода {record.id} не пересчитан, сохранён прежний: {record.status}",
            extra={"record_id": record.id, "window_id": record.window_id}
        )
        return updated

    return updated.model_copy(update={"status": status.value})


def get_occurrence_statuses(record: PeriodRecord, now: Union[date, datetime, None] = None) -> List[str]:
    """
    Текстовые статусы каждого вхождения периода.

    Returns:
        Список строк, выровненный по индексу с occurrence_due_dates
    """
    today = as_date(now)
    grace = timedelta(days=settings.grace_period_days)
    statuses: List[str] = []
    for due, paid, payment_type in zip(
        record.occurrence_due_dates,
        record.occurrence_paid_flags,
        record.occurrence_payment_types,
    ):
        if paid:
            if not record.is_outflow:
                statuses.append("Получено")
            elif payment_type == PaymentType.ADVANCE:
                statuses.append("Оплачено заранее")
            elif payment_type == PaymentType.CATCH_UP:
                statuses.append("Оплачено с опозданием")
            else:
                statuses.append("Оплачено")
        elif due + grace < today:
            statuses.append("Просрочено")
        elif 0 <= (due - today).days <= settings.due_soon_days:
            statuses.append("Скоро срок")
        else:
            statuses.append("Ожидается")
    return statuses


def calculate_progress(record: PeriodRecord) -> Dict[str, int]:
    """
    Проценты выполнения периода.

    Returns:
        Словарь с ключами:
            - payment_progress_percentage: доля оплаченной суммы (без сверхплатежей для платежей)
            - occurrence_progress_percentage: доля оплаченных вхождений
    """
    if record.is_outflow:
        paid = calculate_total_paid_excluding_extra(record)
    else:
        paid = record.total_amount_paid

    payment_progress = 0
    if record.total_amount_due > 0:
        payment_progress = min(100, int(round(paid / record.total_amount_due * 100)))

    occurrence_progress = 0
    if record.occurrence_count > 0:
        occurrence_progress = int(round(_paid_count(record) / record.occurrence_count * 100))

    return {
        "payment_progress_percentage": payment_progress,
        "occurrence_progress_percentage": occurrence_progress,
    }
