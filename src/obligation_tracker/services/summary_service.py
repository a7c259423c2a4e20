"""
Сервис сводных отчётов по записям периодов.

Содержит функции для:
- Агрегированной сводки по набору обязательств за диапазон окон
- Проверки согласованности трёх представлений (месяц, неделя, половина месяца)
- Детальной карточки периода для слоя представления
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple, Union

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from obligation_tracker.config import settings
from obligation_tracker.models import (
    ObligationSummary,
    PeriodGranularity,
    PeriodRecordDB,
    TriViewConsistencyReport,
)
from obligation_tracker.services.period_record_service import get_period_status
from obligation_tracker.services.status_service import (
    calculate_payment_breakdown,
    calculate_progress,
    get_occurrence_statuses,
)
from obligation_tracker.utils.money import ZERO, to_money
from obligation_tracker.utils.validation import validate_date_range

# Настройка логирования
logger = logging.getLogger(__name__)


def _query_records(
    session: Session,
    obligation_ids: List[str],
    start_date: date,
    end_date: date,
    granularity: PeriodGranularity
) -> List[PeriodRecordDB]:
    return session.query(PeriodRecordDB).filter(
        PeriodRecordDB.obligation_id.in_(obligation_ids),
        PeriodRecordDB.granularity == granularity,
        PeriodRecordDB.period_start <= end_date,
        PeriodRecordDB.period_end >= start_date
    ).order_by(PeriodRecordDB.period_start).all()


def get_summary(
    session: Session,
    obligation_ids: Iterable[str],
    window_range: Tuple[date, date],
    granularity: PeriodGranularity = PeriodGranularity.MONTHLY
) -> ObligationSummary:
    """
    Сводка по записям периодов, окна которых пересекают диапазон.

    Args:
        session: Активная сессия БД
        obligation_ids: ID обязательств
        window_range: Кортеж (начало, конец) диапазона
        granularity: Гранулярность записей для суммирования

    Returns:
        ObligationSummary: ожидаемая, оплаченная, неоплаченная суммы,
        переплата и количество периодов с остатком

    Raises:
        ValueError: Если начало диапазона позже конца
        SQLAlchemyError: При ошибках работы с базой данных

    Example:
        >>> summary = get_summary(session, [rent.id], (date(2025, 1, 1), date(2025, 3, 31)))
        >>> summary.expected, summary.pending_count
        (Decimal('3000.00'), 1)
    """
    start_date, end_date = window_range
    validate_date_range(start_date, end_date)
    ids = list(dict.fromkeys(obligation_ids))
    if not ids:
        return ObligationSummary()

    try:
        rows = _query_records(session, ids, start_date, end_date, granularity)
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при построении сводки по обязательствам {ids}: {e}")
        raise

    expected = paid = unpaid = overpaid = ZERO
    pending_count = 0
    for row in rows:
        expected += row.total_amount_due
        paid += row.total_amount_paid
        unpaid += row.total_amount_unpaid
        overpaid += row.total_amount_overpaid
        if row.total_amount_unpaid > 0:
            pending_count += 1

    summary = ObligationSummary(
        expected=to_money(expected),
        paid=to_money(paid),
        unpaid=to_money(unpaid),
        overpaid=to_money(overpaid),
        pending_count=pending_count,
        period_count=len(rows),
    )
    logger.debug(
        f"Сводка {granularity.value} за {start_date} - {end_date}: ожидается {summary.expected}, "
        f"оплачено {summary.paid}, периодов с остатком {summary.pending_count}"
    )
    return summary


def check_tri_view_consistency(
    session: Session,
    obligation_id: str,
    start_date: date,
    end_date: date
) -> TriViewConsistencyReport:
    """
    Проверяет, что оплаченные суммы совпадают во всех трёх представлениях.

    Учитываются записи, окна которых пересекают диапазон. Окна разных
    гранулярностей на границах диапазона покрывают разные дни, поэтому
    транзакции вне диапазона, попавшие в граничные окна, могут дать
    расхождение. Допуск равен rounding_tolerance на каждый период
    наибольшего из представлений.

    Returns:
        TriViewConsistencyReport с суммами и количеством записей по гранулярностям
    """
    validate_date_range(start_date, end_date)

    totals: Dict[str, Decimal] = {}
    period_counts: Dict[str, int] = {}
    for granularity in PeriodGranularity:
        rows = _query_records(session, [obligation_id], start_date, end_date, granularity)
        totals[granularity.value] = to_money(sum((row.total_amount_paid for row in rows), ZERO))
        period_counts[granularity.value] = len(rows)

    tolerance = to_money(Decimal(str(settings.rounding_tolerance)) * max(1, max(period_counts.values())))
    spread = max(totals.values()) - min(totals.values())
    is_consistent = spread <= tolerance

    if not is_consistent:
        logger.warning(
            f"Расхождение представлений обязательства {obligation_id}: {totals} (допуск {tolerance})",
            extra={"obligation_id": obligation_id}
        )
    return TriViewConsistencyReport(
        obligation_id=obligation_id,
        totals=totals,
        period_counts=period_counts,
        tolerance=tolerance,
        is_consistent=is_consistent,
    )


def get_period_overview(
    session: Session,
    obligation_id: str,
    window_id: str,
    now: Union[date, datetime, None] = None
) -> Dict[str, Any]:
    """
    Карточка периода для слоя представления.

    Returns:
        Словарь с ключами:
            - record: запись периода
            - occurrence_statuses: текстовые статусы вхождений
            - breakdown: разбивка оплат по типам
            - payment_progress_percentage, occurrence_progress_percentage

    Raises:
        WindowNotFoundError: Если записи для окна нет
    """
    record = get_period_status(session, obligation_id, window_id)
    overview: Dict[str, Any] = {
        "record": record,
        "occurrence_statuses": get_occurrence_statuses(record, now),
        "breakdown": calculate_payment_breakdown(record),
    }
    overview.update(calculate_progress(record))
    return overview
