"""
Сервис расчёта вхождений периодических обязательств.

Содержит функции для:
- Проверки корректности расписания обязательства
- Вычисления даты N-го вхождения с учётом конца месяца
- Расчёта вхождений обязательства внутри окна периода
- Построения новой записи периода (проекции обязательства на окно)
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from obligation_tracker.models import (
    Frequency,
    Obligation,
    OccurrenceProjection,
    PeriodRecord,
    PeriodWindow,
)
from obligation_tracker.services.status_service import refresh_derived_fields
from obligation_tracker.utils.exceptions import InvalidObligationError
from obligation_tracker.utils.money import ZERO, to_money, to_rate
from obligation_tracker.utils.validation import validate_date_range

# Настройка логирования
logger = logging.getLogger(__name__)

# Шаг в днях для частот с фиксированным интервалом
_DAY_STEPS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
    Frequency.SEMIMONTHLY: 15,
}

# Шаг в месяцах для календарных частот
_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.ANNUAL: 12,
}

# Длина цикла в днях для расчёта дневной ставки
CYCLE_DAYS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
    Frequency.SEMIMONTHLY: 15,
    Frequency.MONTHLY: 30,
    Frequency.QUARTERLY: 91,
    Frequency.ANNUAL: 365,
}


def validate_obligation_schedule(obligation: Obligation) -> None:
    """
    Проверяет, что у обязательства заданы частота и опорная дата.

    Raises:
        InvalidObligationError: Если частота или опорная дата отсутствуют
    """
    if obligation.frequency is None:
        error_msg = f"У обязательства {obligation.id} не задана частота повторения"
        logger.error(error_msg)
        raise InvalidObligationError(error_msg)
    if obligation.reference_date is None:
        error_msg = f"У обязательства {obligation.id} не задана опорная дата"
        logger.error(error_msg)
        raise InvalidObligationError(error_msg)


def occurrence_at(reference_date: date, frequency: Frequency, index: int) -> date:
    """
    Вычисляет дату вхождения с номером index относительно опорной даты.

    Для календарных частот дата отсчитывается от опорной даты целиком
    (а не от предыдущего вхождения), поэтому день месяца не "сползает":
    31 января -> 28/29 февраля -> 31 марта.

    Args:
        reference_date: Опорная дата обязательства (index = 0)
        frequency: Частота повторения
        index: Номер вхождения (может быть отрицательным)

    Returns:
        Дата вхождения

    Example:
        >>> occurrence_at(date(2025, 1, 31), Frequency.MONTHLY, 1)
        date(2025, 2, 28)
        >>> occurrence_at(date(2025, 1, 31), Frequency.MONTHLY, 2)
        date(2025, 3, 31)
    """
    if frequency in _DAY_STEPS:
        return reference_date + timedelta(days=_DAY_STEPS[frequency] * index)
    if frequency in _MONTH_STEPS:
        # relativedelta сам ограничивает день последним днём месяца
        return reference_date + relativedelta(months=_MONTH_STEPS[frequency] * index)

    error_msg = f"Неизвестная частота повторения: {frequency}"
    logger.error(error_msg)
    raise InvalidObligationError(error_msg)


def _initial_index(reference_date: date, frequency: Frequency, target: date) -> int:
    # Начальное приближение, чтобы не шагать от далёкой опорной даты по одному интервалу
    if frequency in _DAY_STEPS:
        return (target - reference_date).days // _DAY_STEPS[frequency]
    months = (target.year - reference_date.year) * 12 + (target.month - reference_date.month)
    return months // _MONTH_STEPS[frequency]


def compute_due_dates(
    reference_date: date,
    frequency: Frequency,
    start_date: date,
    end_date: date
) -> List[date]:
    """
    Даты вхождений в диапазоне [start_date, end_date] включительно.

    От опорной даты шагаем назад, пока дата не станет <= end_date, затем вперёд,
    пока она < start_date, и собираем все даты до выхода за end_date.

    Returns:
        Список дат в строго возрастающем порядке (может быть пустым)

    Raises:
        ValueError: Если start_date > end_date
    """
    validate_date_range(start_date, end_date)

    index = _initial_index(reference_date, frequency, start_date)
    while occurrence_at(reference_date, frequency, index) > end_date:
        index -= 1
    while occurrence_at(reference_date, frequency, index) < start_date:
        index += 1

    dates: List[date] = []
    current = occurrence_at(reference_date, frequency, index)
    while current <= end_date:
        dates.append(current)
        index += 1
        current = occurrence_at(reference_date, frequency, index)
    return dates


def compute_occurrences(obligation: Obligation, window: PeriodWindow) -> OccurrenceProjection:
    """
    Рассчитывает вхождения обязательства внутри окна периода.

    Args:
        obligation: Обязательство
        window: Окно периода

    Returns:
        OccurrenceProjection: количество, даты и ожидаемая сумма.
        Для неактивного обязательства - (0, [], 0).

    Raises:
        InvalidObligationError: Если у активного обязательства нет частоты или опорной даты

    Example:
        >>> projection = compute_occurrences(salary, january_window)
        >>> projection.count, projection.total_expected_amount
        (3, Decimal('6000.00'))
    """
    if not obligation.is_active:
        logger.debug(f"Обязательство {obligation.id} неактивно, вхождений в окне {window.id} нет")
        return OccurrenceProjection(count=0, due_dates=[], total_expected_amount=ZERO)

    validate_obligation_schedule(obligation)

    due_dates = compute_due_dates(
        obligation.reference_date,
        obligation.frequency,
        window.start_date,
        window.end_date,
    )
    total = to_money(abs(obligation.amount) * len(due_dates))

    logger.debug(
        f"Обязательство {obligation.id}: {len(due_dates)} вхождений в окне {window.id}",
        extra={"obligation_id": obligation.id, "window_id": window.id}
    )
    return OccurrenceProjection(count=len(due_dates), due_dates=due_dates, total_expected_amount=total)


def calculate_withholding(
    amount: Decimal,
    frequency: Optional[Frequency],
    window: PeriodWindow
) -> Tuple[int, Decimal, Decimal]:
    """
    Дневная ставка и сумма резерва за окно.

    Returns:
        Кортеж (cycle_days, daily_rate, amount_withheld)
    """
    cycle_days = CYCLE_DAYS.get(frequency, 30)
    daily_rate = to_rate(abs(amount) / cycle_days)
    amount_withheld = to_money(daily_rate * window.days)
    return cycle_days, daily_rate, amount_withheld


def project_period_record(
    obligation: Obligation,
    window: PeriodWindow,
    now: Union[date, datetime, None] = None
) -> PeriodRecord:
    """
    Строит новую запись периода - проекцию обязательства на окно.

    Все вхождения не оплачены; итоги и статус рассчитаны.

    Raises:
        InvalidObligationError: Если расписание обязательства некорректно
    """
    projection = compute_occurrences(obligation, window)
    cycle_days, daily_rate, amount_withheld = calculate_withholding(
        obligation.amount, obligation.frequency, window
    )

    record = PeriodRecord(
        obligation_id=obligation.id,
        window_id=window.id,
        granularity=window.granularity,
        obligation_type=obligation.type,
        owner_id=obligation.owner_id,
        custom_name=obligation.custom_name,
        is_active=obligation.is_active,
        period_start=window.start_date,
        period_end=window.end_date,
        amount_per_occurrence=to_money(abs(obligation.amount)),
        cycle_days=cycle_days,
        daily_rate=daily_rate,
        amount_withheld=amount_withheld,
        occurrence_count=projection.count,
        occurrence_due_dates=projection.due_dates,
        occurrence_paid_flags=[False] * projection.count,
        occurrence_transaction_ids=[None] * projection.count,
        occurrence_amounts=[ZERO] * projection.count,
        occurrence_payment_types=[None] * projection.count,
        transaction_ids=[],
    )
    return refresh_derived_fields(record, now)


def reproject_occurrences(
    record: PeriodRecord,
    obligation: Obligation,
    window: PeriodWindow,
    now: Union[date, datetime, None] = None
) -> PeriodRecord:
    """
    Пересчитывает даты вхождений неоплаченной записи по текущему расписанию.

    Используется только для записей без оплаченных вхождений: все слоты
    сбрасываются, привязанные транзакции сохраняются в transaction_ids
    для повторного сопоставления.
    """
    projection = compute_occurrences(obligation, window)
    cycle_days, daily_rate, amount_withheld = calculate_withholding(
        obligation.amount, obligation.frequency, window
    )
    updated = record.model_copy(update={
        "is_active": obligation.is_active,
        "amount_per_occurrence": to_money(abs(obligation.amount)),
        "cycle_days": cycle_days,
        "daily_rate": daily_rate,
        "amount_withheld": amount_withheld,
        "occurrence_count": projection.count,
        "occurrence_due_dates": projection.due_dates,
        "occurrence_paid_flags": [False] * projection.count,
        "occurrence_transaction_ids": [None] * projection.count,
        "occurrence_amounts": [ZERO] * projection.count,
        "occurrence_payment_types": [None] * projection.count,
    })
    return refresh_derived_fields(updated, now)
