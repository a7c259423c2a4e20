"""
Сервис хранения записей периодов.

Содержит функции для:
- Чтения обязательств, записей периодов и транзакций
- Преобразования записей между SQLAlchemy и Pydantic моделями
- Атомарной фиксации пакета записей одной гранулярности
- Повторной фиксации с полным пересчётом при конфликте

Все функции принимают сессию БД как параметр (Dependency Injection).
"""

import logging
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple, Union

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from obligation_tracker.config import settings
from obligation_tracker.models import (
    GranularityResult,
    Obligation,
    ObligationDB,
    PeriodGranularity,
    PeriodRecord,
    PeriodRecordDB,
    PeriodWindow,
    Transaction,
    TransactionDB,
)
from obligation_tracker.utils.exceptions import (
    CommitConflictError,
    ObligationNotFoundError,
    WindowNotFoundError,
)

# Настройка логирования
logger = logging.getLogger(__name__)

# Служебные поля, не участвующие в сравнении записей
BOOKKEEPING_FIELDS = frozenset({"version", "created_at", "updated_at"})

RecordChange = Tuple[Optional[PeriodRecord], PeriodRecord]


def get_obligation(session: Session, obligation_id: str) -> Obligation:
    """
    Загружает обязательство.

    Raises:
        ObligationNotFoundError: Если обязательство не найдено
    """
    row = session.get(ObligationDB, obligation_id)
    if row is None:
        error_msg = f"Обязательство с ID {obligation_id} не найдено"
        logger.error(error_msg)
        raise ObligationNotFoundError(error_msg)
    return Obligation.model_validate(row)


def fetch_transactions_by_ids(session: Session, ids: Iterable[str]) -> List[Transaction]:
    """
    Пакетная загрузка транзакций по ID.

    Порядок результата соответствует порядку ids; отсутствующие ID пропускаются.

    Raises:
        SQLAlchemyError: При ошибках работы с базой данных
    """
    ordered = list(dict.fromkeys(ids))
    if not ordered:
        return []
    try:
        rows = session.query(TransactionDB).filter(TransactionDB.id.in_(ordered)).all()
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при загрузке транзакций: {e}")
        raise

    by_id = {row.id: Transaction.model_validate(row) for row in rows}
    missing = [tid for tid in ordered if tid not in by_id]
    if missing:
        logger.warning(f"Не найдены транзакции: {missing}")
    return [by_id[tid] for tid in ordered if tid in by_id]


def record_from_db(row: PeriodRecordDB) -> PeriodRecord:
    """Преобразует строку БД в рабочую модель записи периода."""
    return PeriodRecord.model_validate(row)


def apply_record_to_db(row: PeriodRecordDB, record: PeriodRecord) -> None:
    """
    Переносит поля рабочей модели в строку БД.

    JSON массивы сериализуются в строки (даты - ISO, суммы - десятичные строки).
    """
    row.obligation_id = record.obligation_id
    row.window_id = record.window_id
    row.granularity = record.granularity
    row.obligation_type = record.obligation_type
    row.owner_id = record.owner_id
    row.custom_name = record.custom_name
    row.is_active = record.is_active
    row.period_start = record.period_start
    row.period_end = record.period_end
    row.amount_per_occurrence = record.amount_per_occurrence
    row.cycle_days = record.cycle_days
    row.daily_rate = record.daily_rate
    row.amount_withheld = record.amount_withheld
    row.occurrence_count = record.occurrence_count
    row.occurrence_due_dates = [d.isoformat() for d in record.occurrence_due_dates]
    row.occurrence_paid_flags = list(record.occurrence_paid_flags)
    row.occurrence_transaction_ids = list(record.occurrence_transaction_ids)
    row.occurrence_amounts = [str(a) for a in record.occurrence_amounts]
    row.occurrence_payment_types = [pt.value if pt is not None else None for pt in record.occurrence_payment_types]
    row.transaction_ids = list(record.transaction_ids)
    row.assigned_transaction_ids = list(record.assigned_transaction_ids)
    row.occurrences_paid = record.occurrences_paid
    row.total_amount_due = record.total_amount_due
    row.total_amount_paid = record.total_amount_paid
    row.total_amount_unpaid = record.total_amount_unpaid
    row.total_amount_overpaid = record.total_amount_overpaid
    row.is_fully_paid = record.is_fully_paid
    row.is_partially_paid = record.is_partially_paid
    row.status = record.status
    row.next_unpaid_due_date = record.next_unpaid_due_date


def record_changed_fields(before: Optional[PeriodRecord], after: PeriodRecord) -> Set[str]:
    """
    Имена полей, различающихся у двух версий записи (без служебных полей).

    Для новой записи (before is None) возвращаются все поля.
    """
    after_data = after.model_dump(exclude=set(BOOKKEEPING_FIELDS))
    if before is None:
        return set(after_data)
    before_data = before.model_dump(exclude=set(BOOKKEEPING_FIELDS))
    return {name for name, value in after_data.items() if before_data.get(name) != value}


def get_period_record_row(session: Session, obligation_id: str, window_id: str) -> Optional[PeriodRecordDB]:
    """Строка записи периода по ключу (obligation_id, window_id) или None."""
    return session.query(PeriodRecordDB).filter(
        PeriodRecordDB.obligation_id == obligation_id,
        PeriodRecordDB.window_id == window_id
    ).first()


def get_records_for_obligation(
    session: Session,
    obligation_id: str,
    granularity: Optional[PeriodGranularity] = None
) -> List[PeriodRecord]:
    """
    Все записи периодов обязательства, упорядоченные по началу окна.

    Args:
        session: Активная сессия БД
        obligation_id: ID обязательства
        granularity: Ограничение по гранулярности (None = все)
    """
    try:
        query = session.query(PeriodRecordDB).filter(PeriodRecordDB.obligation_id == obligation_id)
        if granularity is not None:
            query = query.filter(PeriodRecordDB.granularity == granularity)
        rows = query.order_by(PeriodRecordDB.period_start).all()
        return [record_from_db(row) for row in rows]
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при получении записей периодов обязательства {obligation_id}: {e}")
        raise


def get_period_status(session: Session, obligation_id: str, window_id: str) -> PeriodRecord:
    """
    Возвращает запись периода обязательства в окне (для слоя представления).

    Raises:
        WindowNotFoundError: Если записи для окна нет
    """
    row = get_period_record_row(session, obligation_id, window_id)
    if row is None:
        raise WindowNotFoundError(
            f"Запись периода для обязательства {obligation_id} в окне {window_id} не найдена"
        )
    return record_from_db(row)


def commit_atomic(
    session: Session,
    records: Sequence[PeriodRecord],
    now: Optional[datetime] = None
) -> List[PeriodRecordDB]:
    """
    Атомарно записывает пакет записей периодов.

    Либо фиксируются все записи пакета, либо ни одна: при любой ошибке
    выполняется откат и выбрасывается CommitConflictError.

    Args:
        session: Активная сессия БД
        records: Записи для сохранения (новые и изменённые)
        now: Метка времени изменения

    Returns:
        Сохранённые строки БД

    Raises:
        CommitConflictError: Если пакет не удалось зафиксировать
    """
    timestamp = now or datetime.now()
    try:
        rows: List[PeriodRecordDB] = []
        for record in records:
            row = session.get(PeriodRecordDB, record.id)
            if row is None:
                row = PeriodRecordDB(id=record.id, created_at=timestamp)
                session.add(row)
            apply_record_to_db(row, record)
            row.updated_at = timestamp
            rows.append(row)

        session.flush()
        session.commit()
        logger.debug(f"Зафиксирован пакет из {len(rows)} записей периодов")
        return rows

    except SQLAlchemyError as e:
        session.rollback()
        error_msg = f"Не удалось зафиксировать пакет из {len(records)} записей периодов: {e}"
        logger.warning(error_msg)
        raise CommitConflictError(error_msg) from e


def commit_with_retry(
    session: Session,
    granularity: PeriodGranularity,
    build_changes: Callable[[], List[RecordChange]],
    now: Union[date, datetime, None] = None
) -> Tuple[GranularityResult, List[RecordChange]]:
    """
    Рассчитывает и фиксирует пакет одной гранулярности с повторами.

    build_changes каждый раз заново читает состояние из БД и возвращает
    пары (до, после). Записываются только изменившиеся записи. При
    CommitConflictError расчёт повторяется целиком (это безопасно, так как
    все итоги пересчитываются из полных массивов), не более
    settings.max_commit_retries раз.

    Returns:
        Кортеж (результат гранулярности, записанные пары)

    Raises:
        InvalidObligationError: Некорректное обязательство (не повторяется)
    """
    timestamp = now if isinstance(now, datetime) else datetime.now()
    attempts = 0

    while True:
        attempts += 1
        try:
            changes = [
                (before, after) for before, after in build_changes()
                if record_changed_fields(before, after)
            ]
            if changes:
                commit_atomic(session, [after for _, after in changes], timestamp)
            logger.info(
                f"Гранулярность {granularity.value}: записано {len(changes)} записей (попытка {attempts})",
                extra={"granularity": granularity, "attempts": attempts}
            )
            return GranularityResult(
                granularity=granularity,
                success=True,
                records_written=len(changes),
                attempts=attempts,
            ), changes

        except CommitConflictError as e:
            if attempts > settings.max_commit_retries:
                logger.error(
                    f"Гранулярность {granularity.value}: пакет не зафиксирован после {attempts} попыток",
                    extra={"granularity": granularity, "attempts": attempts}
                )
                return GranularityResult(
                    granularity=granularity,
                    success=False,
                    attempts=attempts,
                    error=str(e),
                ), []
            logger.warning(f"Гранулярность {granularity.value}: конфликт фиксации, повтор {attempts}")

        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Гранулярность {granularity.value}: ошибка чтения состояния: {e}")
            return GranularityResult(
                granularity=granularity,
                success=False,
                attempts=attempts,
                error=str(e),
            ), []


def window_for_record(record: PeriodRecord) -> PeriodWindow:
    """Окно периода, восстановленное из копии границ в записи."""
    return PeriodWindow(
        id=record.window_id,
        granularity=record.granularity,
        start_date=record.period_start,
        end_date=record.period_end,
        year=record.period_start.year,
    )
