"""
Координатор событий движка сверки.

Единая точка входа для изменений, затрагивающих записи периодов:
- TRANSACTION_ADDED: транзакция привязана к обязательству
- TRANSACTION_REMOVED: транзакция отвязана от обязательства
- OBLIGATION_EDITED: изменено определение обязательства
- WINDOW_CREATED: в каталоге появились новые окна

Транзакция сопоставляется с вхождением по расписанию обязательства один раз
(реестр оплат), а каждая гранулярность получает эту оплату в окне, где лежит
дата вхождения. Гранулярности (месяц, неделя, половина месяца)
обрабатываются независимо: свой пакет, своя атомарная фиксация и свои
повторы. Сбой одной гранулярности не откатывает остальные и отражается
в EventResult; повторная обработка события дописывает недостающее.

Защита от циклов: изменение записи, затронувшее только поля движка
(ENGINE_OWNED_FIELDS) или поля проекции, повторного запуска не вызывает.
Повторное сопоставление запускается только при изменении ручной привязки
транзакций (ASSOCIATION_FIELDS).
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from obligation_tracker.models import (
    EventResult,
    GranularityResult,
    Obligation,
    ObligationEditedPayload,
    ObligationEventKind,
    OccurrenceLedger,
    PeriodGranularity,
    PeriodRecord,
    RecordChangeKind,
    TransactionEventPayload,
    WindowCreatedPayload,
)
from obligation_tracker.services.calendar_service import get_windows_by_ids
from obligation_tracker.services.matching_service import pin_to_record
from obligation_tracker.services.occurrence_service import validate_obligation_schedule
from obligation_tracker.services.period_record_service import (
    RecordChange,
    commit_with_retry,
    fetch_transactions_by_ids,
    get_obligation,
    record_changed_fields,
)
from obligation_tracker.services.reconciliation_service import (
    LedgerSettle,
    linked_transactions,
    reconcile_granularity,
    settle_transactions,
)
from obligation_tracker.services.recalculation_service import recalculate_obligation_periods
from obligation_tracker.services.status_service import as_date
from obligation_tracker.utils.cache import WindowCatalogCache
from obligation_tracker.utils.exceptions import BusinessLogicError, WindowNotFoundError

# Настройка логирования
logger = logging.getLogger(__name__)

# Поля, которые записывает только движок сопоставления
ENGINE_OWNED_FIELDS = frozenset({
    "occurrence_paid_flags",
    "occurrence_transaction_ids",
    "occurrence_amounts",
    "occurrence_payment_types",
    "transaction_ids",
    "occurrences_paid",
    "total_amount_due",
    "total_amount_paid",
    "total_amount_unpaid",
    "total_amount_overpaid",
    "is_fully_paid",
    "is_partially_paid",
    "status",
    "next_unpaid_due_date",
    "version",
    "updated_at",
})

# Поля ручной привязки транзакций к периоду
ASSOCIATION_FIELDS = frozenset({"assigned_transaction_ids"})

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def classify_record_change(before: Optional[PeriodRecord], after: PeriodRecord) -> RecordChangeKind:
    """
    Определяет происхождение изменения записи периода.

    Новая запись (before is None) создаётся только движком и считается
    внутренним изменением.

    Example:
        >>> classify_record_change(record, record.model_copy(update={"status": "paid"}))
        <RecordChangeKind.INTERNAL: 'internal'>
    """
    if before is None:
        return RecordChangeKind.INTERNAL

    changed = record_changed_fields(before, after)
    if not changed:
        return RecordChangeKind.NONE
    if changed & ASSOCIATION_FIELDS:
        return RecordChangeKind.ASSOCIATION
    if changed <= ENGINE_OWNED_FIELDS:
        return RecordChangeKind.INTERNAL
    return RecordChangeKind.DEFINITION


def _reconcile_all(
    session: Session,
    obligation: Obligation,
    today: date,
    now: Union[date, datetime, None],
    **options: Any
) -> List[GranularityResult]:
    """Пакет на каждую гранулярность; записанные изменения проходят через классификацию."""
    results: List[GranularityResult] = []
    for granularity in PeriodGranularity:
        def build(granularity: PeriodGranularity = granularity) -> List[RecordChange]:
            return reconcile_granularity(session, obligation, granularity, today, **options)

        granularity_result, changes = commit_with_retry(session, granularity, build, now)
        results.append(granularity_result)
        _dispatch_written(session, changes, now)
    return results


def _settle_linked_pool(session: Session, obligation: Obligation, excluded: List[str]) -> LedgerSettle:
    # Несопоставленные транзакции обязательства занимают свободные вхождения
    def settle(ledger: OccurrenceLedger, records: List[PeriodRecord]) -> None:
        pool = [txn for txn in linked_transactions(session, obligation) if txn.id not in excluded]
        settle_transactions(ledger, obligation, pool)
    return settle


def handle_period_record_change(
    session: Session,
    before: Optional[PeriodRecord],
    after: PeriodRecord,
    now: Union[date, datetime, None] = None,
    cache: Optional[WindowCatalogCache] = None
) -> RecordChangeKind:
    """
    Реакция на изменение записи периода.

    При изменении ручной привязки каждая назначенная транзакция
    закрепляется за вхождением этой записи и освобождает прежнее вхождение,
    после чего реестр переносится во все три гранулярности. Записи движка
    меняют только ENGINE_OWNED_FIELDS, поэтому повторного запуска не
    происходит. Остальные изменения пропускаются.

    Returns:
        Классификация изменения
    """
    kind = classify_record_change(before, after)
    if kind != RecordChangeKind.ASSOCIATION:
        logger.debug(f"Изменение записи {after.window_id} ({kind.value}) не требует пересопоставления")
        return kind

    today = as_date(now)
    obligation = get_obligation(session, after.obligation_id)
    logger.info(
        f"Изменена привязка транзакций записи {after.window_id}, пересопоставление",
        extra={"obligation_id": after.obligation_id, "window_id": after.window_id}
    )

    def settle(ledger: OccurrenceLedger, records: List[PeriodRecord]) -> None:
        target = next((r for r in records if r.window_id == after.window_id), None)
        if target is None:
            return
        for txn in fetch_transactions_by_ids(session, target.assigned_transaction_ids):
            pin_to_record(ledger, target, txn, today)

    results = _reconcile_all(session, obligation, today, now, settle=settle, cache=cache)
    for granularity_result in results:
        if not granularity_result.success:
            logger.error(
                f"Привязка записи {after.window_id} не перенесена в {granularity_result.granularity.value}: "
                f"{granularity_result.error}"
            )
    return kind


def _parse_payload(model: Type[PayloadT], payload: Union[PayloadT, Dict[str, Any]]) -> PayloadT:
    if isinstance(payload, model):
        return payload
    return model.model_validate(payload)


def _dispatch_written(session: Session, changes: List[RecordChange], now: Union[date, datetime, None]) -> None:
    # Записи движка проходят через ту же реакцию на изменение и на ней затихают
    for before, after in changes:
        handle_period_record_change(session, before, after, now)


def _handle_transaction_added(
    session: Session,
    obligation: Obligation,
    payload: TransactionEventPayload,
    today: date,
    now: Union[date, datetime, None],
    cache: Optional[WindowCatalogCache]
) -> List[GranularityResult]:
    found = fetch_transactions_by_ids(session, [payload.transaction_id])
    if not found:
        error_msg = f"Транзакция {payload.transaction_id} не найдена"
        logger.error(error_msg)
        raise BusinessLogicError(error_msg)
    transaction = found[0]
    if transaction.obligation_id not in (None, obligation.id):
        error_msg = (
            f"Транзакция {transaction.id} привязана к другому обязательству "
            f"({transaction.obligation_id})"
        )
        logger.error(error_msg)
        raise BusinessLogicError(error_msg)
    if transaction.obligation_id is None and transaction.id not in obligation.transaction_ids:
        error_msg = f"Транзакция {transaction.id} не привязана к обязательству {obligation.id}"
        logger.error(error_msg)
        raise BusinessLogicError(error_msg)

    def settle(ledger: OccurrenceLedger, records: List[PeriodRecord]) -> None:
        settle_transactions(ledger, obligation, [transaction])

    return _reconcile_all(
        session, obligation, today, now,
        settle=settle, event_dates=[transaction.transaction_date], cache=cache,
    )


def _handle_transaction_removed(
    session: Session,
    obligation: Obligation,
    payload: TransactionEventPayload,
    today: date,
    now: Union[date, datetime, None],
    cache: Optional[WindowCatalogCache]
) -> List[GranularityResult]:
    excluded = [payload.transaction_id]
    return _reconcile_all(
        session, obligation, today, now,
        settle=_settle_linked_pool(session, obligation, excluded), excluded_ids=excluded, cache=cache,
    )


def _handle_window_created(
    session: Session,
    obligation: Obligation,
    payload: WindowCreatedPayload,
    today: date,
    now: Union[date, datetime, None],
    cache: Optional[WindowCatalogCache]
) -> List[GranularityResult]:
    windows = get_windows_by_ids(session, payload.window_ids)
    missing = set(payload.window_ids) - {w.id for w in windows}
    for window_id in sorted(missing):
        logger.warning(str(WindowNotFoundError(f"Окно {window_id} отсутствует в каталоге и пропущено")))

    return _reconcile_all(
        session, obligation, today, now,
        settle=_settle_linked_pool(session, obligation, []), event_windows=windows, cache=cache,
    )


def on_obligation_event(
    session: Session,
    obligation_id: str,
    event_kind: Union[ObligationEventKind, str],
    payload: Union[BaseModel, Dict[str, Any]],
    now: Union[date, datetime, None] = None,
    cache: Optional[WindowCatalogCache] = None
) -> EventResult:
    """
    Обрабатывает событие обязательства по всем трём гранулярностям.

    Args:
        session: Активная сессия БД
        obligation_id: ID обязательства
        event_kind: Тип события
        payload: Данные события (модель или словарь)
        now: Опорная дата "сейчас" для расчёта статусов
        cache: Необязательный кэш каталога окон (устаревшие данные сбрасываются)

    Returns:
        EventResult с результатом по каждой гранулярности

    Raises:
        ObligationNotFoundError: Если обязательство не найдено
        InvalidObligationError: Если у активного обязательства некорректное расписание
        BusinessLogicError: Если транзакция события не найдена или не привязана к обязательству
        ValueError: Если тип события неизвестен

    Example:
        >>> result = on_obligation_event(session, obligation.id, ObligationEventKind.TRANSACTION_ADDED,
        ...                              {"transaction_id": txn.id}, now=date(2025, 1, 20))
        >>> result.success
        True
    """
    kind = ObligationEventKind(event_kind)
    today = as_date(now)
    if cache is not None:
        cache.refresh(datetime.now())

    logger.info(
        f"Обработка события {kind.value} для обязательства {obligation_id}",
        extra={"obligation_id": obligation_id, "event_kind": kind}
    )

    if kind == ObligationEventKind.OBLIGATION_EDITED:
        edited = _parse_payload(ObligationEditedPayload, payload)
        recalculation = recalculate_obligation_periods(session, edited.before, edited.after, now, cache)
        return EventResult(
            obligation_id=obligation_id,
            event_kind=kind.value,
            granularities=recalculation.granularities,
        )

    obligation = get_obligation(session, obligation_id)
    if obligation.is_active:
        validate_obligation_schedule(obligation)

    if kind == ObligationEventKind.TRANSACTION_ADDED:
        granularities = _handle_transaction_added(
            session, obligation, _parse_payload(TransactionEventPayload, payload), today, now, cache
        )
    elif kind == ObligationEventKind.TRANSACTION_REMOVED:
        granularities = _handle_transaction_removed(
            session, obligation, _parse_payload(TransactionEventPayload, payload), today, now, cache
        )
    else:
        granularities = _handle_window_created(
            session, obligation, _parse_payload(WindowCreatedPayload, payload), today, now, cache
        )

    result = EventResult(obligation_id=obligation_id, event_kind=kind.value, granularities=granularities)
    if result.success:
        logger.info(f"Событие {kind.value} для обязательства {obligation_id} обработано")
    else:
        logger.error(
            f"Событие {kind.value} для обязательства {obligation_id}: сбой гранулярностей "
            f"{[g.value for g in result.failed_granularities]}"
        )
    return result
