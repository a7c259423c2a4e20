"""
Сверка записей периодов одной гранулярности с реестром оплат обязательства.

Реестр (OccurrenceLedger) собирается из всех записей обязательства при
каждом расчёте, событие вносит в него свои изменения, после чего реестр
переносится в записи гранулярности по датам вхождений. Так одна оплата
попадает в месяц, неделю и половину месяца, содержащие дату вхождения,
и учитывается в каждой гранулярности ровно один раз.

Все функции принимают сессию БД как параметр (Dependency Injection).
"""

import logging
from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional, Set

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from obligation_tracker.config import settings
from obligation_tracker.models import (
    Obligation,
    OccurrenceLedger,
    PeriodGranularity,
    PeriodRecord,
    PeriodWindow,
    Transaction,
    TransactionDB,
    TransactionType,
)
from obligation_tracker.services.calendar_service import find_overlapping_windows
from obligation_tracker.services.matching_service import (
    build_occurrence_ledger,
    match_into_ledger,
    project_ledger,
)
from obligation_tracker.services.occurrence_service import compute_due_dates, project_period_record
from obligation_tracker.services.period_record_service import (
    RecordChange,
    fetch_transactions_by_ids,
    get_records_for_obligation,
)
from obligation_tracker.utils.cache import WindowCatalogCache
from obligation_tracker.utils.exceptions import WindowNotFoundError
from obligation_tracker.utils.money import to_money

# Настройка логирования
logger = logging.getLogger(__name__)

# Изменение реестра событием: (реестр, записи обязательства после подготовки)
LedgerSettle = Callable[[OccurrenceLedger, List[PeriodRecord]], None]
RecordPrepare = Callable[[PeriodRecord], PeriodRecord]


def linked_transactions(session: Session, obligation: Obligation) -> List[Transaction]:
    """
    Транзакции, привязанные к обязательству.

    Объединяет список transaction_ids обязательства и транзакции, у которых
    obligation_id указывает на обязательство.

    Raises:
        SQLAlchemyError: При ошибках работы с базой данных
    """
    try:
        rows = session.query(TransactionDB.id).filter(TransactionDB.obligation_id == obligation.id).all()
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при загрузке транзакций обязательства {obligation.id}: {e}")
        raise
    return fetch_transactions_by_ids(session, list(obligation.transaction_ids) + sorted(row.id for row in rows))


def pinned_transaction_ids(records: Iterable[PeriodRecord]) -> Set[str]:
    """ID транзакций, вручную назначенных записям периодов."""
    return {tid for record in records for tid in record.assigned_transaction_ids}


def schedule_dates_near(obligation: Obligation, dates: Iterable[date]) -> List[date]:
    """
    Даты вхождений расписания в пределах any_match_tolerance_days от данных дат.

    Для неактивного обязательства расписания нет (пустой список).
    """
    if not obligation.is_active:
        return []
    span = timedelta(days=settings.any_match_tolerance_days)
    result: Set[date] = set()
    for target in dates:
        result.update(compute_due_dates(obligation.reference_date, obligation.frequency, target - span, target + span))
    return sorted(result)


def settle_transactions(
    ledger: OccurrenceLedger,
    obligation: Obligation,
    transactions: Iterable[Transaction]
) -> List[str]:
    """
    Заносит транзакции в реестр по расписанию обязательства.

    Каждая транзакция сопоставляется с датами расписания вокруг своей даты.

    Returns:
        ID не сопоставленных транзакций
    """
    pending = [txn for txn in transactions if ledger.due_date_of(txn.id) is None]
    if not pending:
        return []
    return match_into_ledger(
        ledger,
        pending,
        schedule_dates_near(obligation, [txn.transaction_date for txn in pending]),
        obligation.type == TransactionType.EXPENSE,
        to_money(abs(obligation.amount)),
    )


def _covers(records: Iterable[PeriodRecord], target: date) -> bool:
    return any(record.period_start <= target <= record.period_end for record in records)


def _locate_window(
    session: Session,
    target_date: date,
    granularity: PeriodGranularity,
    cache: Optional[WindowCatalogCache]
) -> Optional[PeriodWindow]:
    windows = find_overlapping_windows(session, target_date, granularity, cache)
    if not windows:
        logger.warning(str(WindowNotFoundError(
            f"Нет окна {granularity.value} для даты {target_date}, дата пропущена"
        )))
        return None
    return windows[0]


def reconcile_granularity(
    session: Session,
    obligation: Obligation,
    granularity: PeriodGranularity,
    today: date,
    settle: Optional[LedgerSettle] = None,
    event_dates: Iterable[date] = (),
    event_windows: Iterable[PeriodWindow] = (),
    excluded_ids: Iterable[str] = (),
    prepare: Optional[RecordPrepare] = None,
    cache: Optional[WindowCatalogCache] = None
) -> List[RecordChange]:
    """
    Рассчитывает записи одной гранулярности по реестру оплат.

    Порядок расчёта:
    1. Читаются все записи обязательства, к каждой применяется prepare
    2. Из них собирается реестр; в нём остаются только привязанные
       транзакции (без excluded_ids) и транзакции, назначенные вручную
    3. settle вносит изменения события
    4. Реестр переносится во все записи гранулярности. Новые записи
       создаются для окон event_windows, окон с датами event_dates и окон
       с оплаченными датами реестра, у которых ещё нет записи

    Функция только рассчитывает, фиксацию выполняет commit_with_retry.

    Returns:
        Пары (запись до изменения или None, запись после)
    """
    loaded = get_records_for_obligation(session, obligation.id)
    prepared = [(record, prepare(record) if prepare is not None else record) for record in loaded]
    working = [record for _, record in prepared]

    excluded = set(excluded_ids)
    linked_ids = {txn.id for txn in linked_transactions(session, obligation)}
    valid_ids = (linked_ids - excluded) | pinned_transaction_ids(working)
    ledger = build_occurrence_ledger(obligation.id, working, valid_ids)
    if settle is not None:
        settle(ledger, working)

    own = [(before, record) for before, record in prepared if record.granularity == granularity]
    pairs: List[RecordChange] = [(before, project_ledger(record, ledger, today)) for before, record in own]
    if not obligation.is_active:
        return pairs

    known_windows = {record.window_id for _, record in own}
    own_records = [record for _, record in own]
    windows = [w for w in event_windows if w.granularity == granularity]
    targets = list(event_dates) + [due for due in sorted(ledger.entries) if not _covers(own_records, due)]
    for target in targets:
        window = _locate_window(session, target, granularity, cache)
        if window is not None:
            windows.append(window)

    for window in windows:
        if window.id in known_windows:
            continue
        known_windows.add(window.id)
        record = project_period_record(obligation, window, today)
        pairs.append((None, project_ledger(record, ledger, today)))
        logger.debug(
            f"Новая запись обязательства {obligation.id} в окне {window.id}",
            extra={"obligation_id": obligation.id, "window_id": window.id}
        )

    return pairs
