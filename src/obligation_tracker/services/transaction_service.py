"""
Сервис транзакций.

Содержит операции:
- create_transaction: создание транзакции
- get_transactions_for_obligation: транзакции обязательства за период
- assign_transaction: исключительная привязка транзакции к обязательству
- unassign_transaction: отвязка транзакции от обязательства
- assign_transactions_to_period: ручное назначение транзакций записи периода

Привязка и отвязка запускают движок сверки через координатор событий.
Все функции принимают сессию БД как параметр (Dependency Injection).
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Union

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from obligation_tracker.models import (
    EventResult,
    ObligationDB,
    ObligationEventKind,
    PeriodRecord,
    PeriodRecordDB,
    TransactionCreate,
    TransactionDB,
    TransactionEventPayload,
)
from obligation_tracker.services.coordinator_service import handle_period_record_change, on_obligation_event
from obligation_tracker.services.period_record_service import fetch_transactions_by_ids, record_from_db
from obligation_tracker.utils.cache import WindowCatalogCache
from obligation_tracker.utils.exceptions import BusinessLogicError, ObligationNotFoundError

# Настройка логирования
logger = logging.getLogger(__name__)


def create_transaction(session: Session, transaction: TransactionCreate) -> TransactionDB:
    """
    Создаёт новую транзакцию без привязки к обязательству.

    Args:
        session: Активная сессия БД
        transaction: Данные транзакции (Pydantic модель)

    Returns:
        Созданная транзакция с заполненным ID

    Raises:
        SQLAlchemyError: При ошибках записи в базу данных
    """
    try:
        logger.debug(f"Создание транзакции: {transaction.amount} от {transaction.transaction_date}")

        db_transaction = TransactionDB(**transaction.model_dump())
        session.add(db_transaction)
        session.commit()
        session.refresh(db_transaction)

        logger.info(f"Транзакция успешно создана с ID: {db_transaction.id}")
        return db_transaction

    except SQLAlchemyError as e:
        logger.error(f"Ошибка при сохранении транзакции в БД: {e}")
        session.rollback()
        raise


def get_transactions_for_obligation(
    session: Session,
    obligation_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> List[TransactionDB]:
    """Транзакции, привязанные к обязательству, по возрастанию даты."""
    try:
        query = session.query(TransactionDB).filter(TransactionDB.obligation_id == obligation_id)
        if start_date is not None:
            query = query.filter(TransactionDB.transaction_date >= start_date)
        if end_date is not None:
            query = query.filter(TransactionDB.transaction_date <= end_date)
        return query.order_by(TransactionDB.transaction_date).all()
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при получении транзакций обязательства {obligation_id}: {e}")
        raise


def _get_transaction_row(session: Session, transaction_id: str) -> TransactionDB:
    row = session.get(TransactionDB, transaction_id)
    if row is None:
        error_msg = f"Транзакция с ID {transaction_id} не найдена"
        logger.error(error_msg)
        raise BusinessLogicError(error_msg)
    return row


def assign_transaction(
    session: Session,
    transaction_id: str,
    obligation_id: str,
    now: Union[date, datetime, None] = None,
    cache: Optional[WindowCatalogCache] = None
) -> EventResult:
    """
    Привязывает транзакцию к обязательству и сопоставляет её во всех представлениях.

    Транзакция может принадлежать только одному обязательству. Повторная
    привязка к тому же обязательству допустима и ничего не меняет.

    Returns:
        EventResult события TRANSACTION_ADDED

    Raises:
        BusinessLogicError: Если транзакция не найдена или привязана к другому обязательству
        ObligationNotFoundError: Если обязательство не найдено
    """
    try:
        txn_row = _get_transaction_row(session, transaction_id)
        if txn_row.obligation_id not in (None, obligation_id):
            error_msg = (
                f"Транзакция {transaction_id} уже привязана к обязательству {txn_row.obligation_id}"
            )
            logger.error(error_msg)
            raise BusinessLogicError(error_msg)

        obligation_row = session.get(ObligationDB, obligation_id)
        if obligation_row is None:
            error_msg = f"Обязательство с ID {obligation_id} не найдено"
            logger.error(error_msg)
            raise ObligationNotFoundError(error_msg)

        txn_row.obligation_id = obligation_id
        if transaction_id not in (obligation_row.transaction_ids or []):
            # Новый список, чтобы SQLAlchemy увидел изменение JSON поля
            obligation_row.transaction_ids = list(obligation_row.transaction_ids or []) + [transaction_id]
        session.commit()
        logger.info(f"Транзакция {transaction_id} привязана к обязательству {obligation_id}")

    except SQLAlchemyError as e:
        logger.error(f"Ошибка при привязке транзакции {transaction_id}: {e}")
        session.rollback()
        raise

    return on_obligation_event(
        session,
        obligation_id,
        ObligationEventKind.TRANSACTION_ADDED,
        TransactionEventPayload(transaction_id=transaction_id),
        now=now,
        cache=cache,
    )


def unassign_transaction(
    session: Session,
    transaction_id: str,
    now: Union[date, datetime, None] = None
) -> EventResult:
    """
    Отвязывает транзакцию от обязательства и освобождает её вхождения.

    Returns:
        EventResult события TRANSACTION_REMOVED

    Raises:
        BusinessLogicError: Если транзакция не найдена или ни к чему не привязана
    """
    try:
        txn_row = _get_transaction_row(session, transaction_id)
        obligation_id = txn_row.obligation_id
        if obligation_id is None:
            error_msg = f"Транзакция {transaction_id} не привязана к обязательству"
            logger.error(error_msg)
            raise BusinessLogicError(error_msg)

        obligation_row = session.get(ObligationDB, obligation_id)
        txn_row.obligation_id = None
        if obligation_row is not None:
            obligation_row.transaction_ids = [
                tid for tid in (obligation_row.transaction_ids or []) if tid != transaction_id
            ]
        session.commit()
        logger.info(f"Транзакция {transaction_id} отвязана от обязательства {obligation_id}")

    except SQLAlchemyError as e:
        logger.error(f"Ошибка при отвязке транзакции {transaction_id}: {e}")
        session.rollback()
        raise

    return on_obligation_event(
        session,
        obligation_id,
        ObligationEventKind.TRANSACTION_REMOVED,
        TransactionEventPayload(transaction_id=transaction_id),
        now=now,
    )


def assign_transactions_to_period(
    session: Session,
    record_id: str,
    transaction_ids: List[str],
    now: Union[date, datetime, None] = None
) -> PeriodRecord:
    """
    Вручную назначает транзакции записи периода.

    Каждая назначенная транзакция закрепляется за вхождением этой записи и
    освобождает вхождение, которое занимала раньше, во всех гранулярностях:
    сумма транзакции учитывается в каждом представлении один раз.
    Транзакции другого обязательства назначить нельзя.

    Args:
        session: Активная сессия БД
        record_id: ID записи периода
        transaction_ids: Полный новый список назначенных транзакций
        now: Опорная дата

    Returns:
        Запись периода после переноса реестра оплат

    Raises:
        BusinessLogicError: Если запись или транзакция не найдены, либо транзакция чужая
    """
    ids = list(dict.fromkeys(transaction_ids))
    try:
        row = session.get(PeriodRecordDB, record_id)
        if row is None:
            error_msg = f"Запись периода с ID {record_id} не найдена"
            logger.error(error_msg)
            raise BusinessLogicError(error_msg)

        found = fetch_transactions_by_ids(session, ids)
        if len(found) != len(ids):
            missing = sorted(set(ids) - {txn.id for txn in found})
            raise BusinessLogicError(f"Транзакции не найдены: {missing}")
        foreign = [txn.id for txn in found if txn.obligation_id not in (None, row.obligation_id)]
        if foreign:
            raise BusinessLogicError(f"Транзакции привязаны к другому обязательству: {foreign}")

        before = record_from_db(row)
        row.assigned_transaction_ids = ids
        session.commit()
        session.refresh(row)
        after = record_from_db(row)
        logger.info(f"Записи {row.window_id} вручную назначено транзакций: {len(ids)}")

    except BusinessLogicError as e:
        logger.error(f"Ошибка назначения транзакций записи {record_id}: {e}")
        session.rollback()
        raise
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при сохранении назначения транзакций записи {record_id}: {e}")
        session.rollback()
        raise

    handle_period_record_change(session, before, after, now)
    session.refresh(row)
    return record_from_db(row)
