"""
Сервис инкрементального пересчёта записей периодов.

Вызывается после изменения определения обязательства. Затрагивает только
те поля записей, которые зависят от изменившихся полей обязательства:
- custom_name: переименование во всех записях
- amount: новая ожидаемая сумма только в записях без оплаченных вхождений
- frequency / reference_date / is_active: новые даты вхождений в записях
  без оплаченных вхождений
- transaction_ids: отвязка удалённых и сопоставление новых транзакций
  по расписанию обязательства (через реестр оплат) во всех гранулярностях

Записи с оплаченными вхождениями не меняют ожидаемую сумму и расписание:
история оплат сохраняется такой, какой была на момент оплаты.
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Set, Tuple, Union

from sqlalchemy.orm import Session

from obligation_tracker.models import (
    GranularityResult,
    Obligation,
    OccurrenceLedger,
    PeriodGranularity,
    PeriodRecord,
    RecalculationResult,
)
from obligation_tracker.services.matching_service import unassign_transaction_from_record
from obligation_tracker.services.occurrence_service import (
    calculate_withholding,
    reproject_occurrences,
    validate_obligation_schedule,
)
from obligation_tracker.services.period_record_service import (
    RecordChange,
    commit_with_retry,
    window_for_record,
)
from obligation_tracker.services.reconciliation_service import (
    linked_transactions,
    reconcile_granularity,
    settle_transactions,
)
from obligation_tracker.services.status_service import as_date, refresh_derived_fields
from obligation_tracker.utils.cache import WindowCatalogCache
from obligation_tracker.utils.money import ZERO, to_money

# Настройка логирования
logger = logging.getLogger(__name__)

# Поля обязательства, от которых зависят записи периодов
TRACKED_OBLIGATION_FIELDS = (
    "custom_name",
    "amount",
    "frequency",
    "reference_date",
    "is_active",
    "transaction_ids",
)

SCHEDULE_FIELDS = frozenset({"frequency", "reference_date", "is_active"})


def get_changed_obligation_fields(before: Obligation, after: Obligation) -> List[str]:
    """Имена отслеживаемых полей обязательства, изменившихся при редактировании."""
    return [name for name in TRACKED_OBLIGATION_FIELDS if getattr(before, name) != getattr(after, name)]


def _apply_amount(record: PeriodRecord, obligation: Obligation) -> PeriodRecord:
    cycle_days, daily_rate, amount_withheld = calculate_withholding(
        obligation.amount, obligation.frequency, window_for_record(record)
    )
    return record.model_copy(update={
        "amount_per_occurrence": to_money(abs(obligation.amount)),
        "cycle_days": cycle_days,
        "daily_rate": daily_rate,
        "amount_withheld": amount_withheld,
        "occurrence_amounts": [ZERO] * record.occurrence_count,
    })


def _is_skipped(record: PeriodRecord, changed: Set[str]) -> bool:
    # Оплаченная запись сохраняет сумму и расписание на момент оплаты
    return record.is_settled and bool(changed & (SCHEDULE_FIELDS | {"amount"}))


def recalculate_record(
    record: PeriodRecord,
    after: Obligation,
    changed: Set[str],
    removed_ids: List[str],
    today: date
) -> Tuple[PeriodRecord, bool]:
    """
    Применяет изменение обязательства к одной записи периода.

    Новые транзакции здесь не сопоставляются: это делает общий проход
    по реестру оплат в recalculate_obligation_periods.

    Args:
        record: Текущая запись
        after: Обязательство после изменения
        changed: Изменившиеся поля обязательства
        removed_ids: ID транзакций, отвязанных от обязательства
        today: Опорная дата

    Returns:
        Кортеж (обновлённая запись, пропущена ли запись как оплаченная)
    """
    updated = record
    needs_refresh = False
    skipped = _is_skipped(record, changed)

    if "custom_name" in changed:
        updated = updated.model_copy(update={"custom_name": after.custom_name})

    if not skipped:
        if changed & SCHEDULE_FIELDS:
            updated = reproject_occurrences(updated, after, window_for_record(record), today)
            needs_refresh = True
        elif "amount" in changed:
            updated = _apply_amount(updated, after)
            needs_refresh = True

    for transaction_id in removed_ids:
        updated, was_referenced = unassign_transaction_from_record(updated, transaction_id, today)
        needs_refresh = needs_refresh or was_referenced

    if needs_refresh:
        updated = refresh_derived_fields(updated, today)
    return updated, skipped


def recalculate_obligation_periods(
    session: Session,
    before: Obligation,
    after: Obligation,
    now: Union[date, datetime, None] = None,
    cache: Optional[WindowCatalogCache] = None
) -> RecalculationResult:
    """
    Пересчитывает записи периодов обязательства после его изменения.

    Сначала каждая запись получает изменения определения
    (recalculate_record), затем реестр оплат переносится во все записи:
    новые транзакции обязательства сопоставляются по расписанию, отвязанные
    освобождают вхождения во всех гранулярностях. Каждая гранулярность
    фиксируется отдельным пакетом с повторами.

    Args:
        session: Активная сессия БД
        before: Обязательство до изменения
        after: Обязательство после изменения
        now: Опорная дата "сейчас"
        cache: Необязательный кэш каталога окон

    Returns:
        RecalculationResult: статистика и результаты по гранулярностям

    Raises:
        InvalidObligationError: Если у активного обязательства некорректное расписание

    Example:
        >>> result = recalculate_obligation_periods(session, before, after)
        >>> result.fields_updated
        ['amount']
    """
    today = as_date(now)
    changed = get_changed_obligation_fields(before, after)
    if not changed:
        logger.info(f"Обязательство {after.id}: отслеживаемые поля не изменились, пересчёт не нужен")
        return RecalculationResult(obligation_id=after.id)

    if after.is_active:
        validate_obligation_schedule(after)

    changed_set = set(changed)
    removed_ids = [tid for tid in before.transaction_ids if tid not in after.transaction_ids]
    logger.info(
        f"Пересчёт записей обязательства {after.id}, изменены поля: {changed}",
        extra={"obligation_id": after.id, "fields": changed}
    )

    def prepare(record: PeriodRecord) -> PeriodRecord:
        return recalculate_record(record, after, changed_set, removed_ids, today)[0]

    def settle(ledger: OccurrenceLedger, records: List[PeriodRecord]) -> None:
        pool = [txn for txn in linked_transactions(session, after) if txn.id not in removed_ids]
        settle_transactions(ledger, after, pool)

    stats: Dict[PeriodGranularity, Dict[str, int]] = {}
    granularities: List[GranularityResult] = []

    for granularity in PeriodGranularity:
        def build(granularity: PeriodGranularity = granularity) -> List[RecordChange]:
            pairs = reconcile_granularity(
                session, after, granularity, today,
                settle=settle, excluded_ids=removed_ids, prepare=prepare, cache=cache,
            )
            existing = [before_record for before_record, _ in pairs if before_record is not None]
            # Повтор после конфликта перезаписывает статистику
            stats[granularity] = {
                "queried": len(existing),
                "skipped": sum(1 for record in existing if _is_skipped(record, changed_set)),
            }
            return pairs

        granularity_result, _ = commit_with_retry(session, granularity, build, now)
        granularities.append(granularity_result)

    result = RecalculationResult(
        obligation_id=after.id,
        periods_queried=sum(s["queried"] for s in stats.values()),
        periods_updated=sum(g.records_written for g in granularities),
        periods_skipped=sum(s["skipped"] for s in stats.values()),
        fields_updated=changed,
        granularities=granularities,
    )
    logger.info(
        f"Пересчёт обязательства {after.id} завершён: обновлено {result.periods_updated} "
        f"из {result.periods_queried}, пропущено {result.periods_skipped}"
    )
    return result
