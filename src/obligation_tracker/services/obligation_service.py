"""
Сервис управления обязательствами.

Содержит операции, которые запускают движок сверки:
- create_obligation: создание обязательства с заполнением записей периодов на горизонт
- edit_obligation: изменение обязательства и инкрементальный пересчёт записей
- deactivate_obligation: деактивация вместо удаления
- get_obligations: список обязательств владельца

Все функции принимают сессию БД как параметр (Dependency Injection).
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Tuple, Union

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from obligation_tracker.models import (
    EventResult,
    Obligation,
    ObligationCreate,
    ObligationDB,
    ObligationEditedPayload,
    ObligationEventKind,
    ObligationUpdate,
    PeriodGranularity,
    TransactionDB,
    WindowCreatedPayload,
)
from obligation_tracker.services.calendar_service import ensure_windows, get_overlapping_windows
from obligation_tracker.services.coordinator_service import on_obligation_event
from obligation_tracker.utils.cache import WindowCatalogCache
from obligation_tracker.utils.exceptions import BusinessLogicError, ObligationNotFoundError
from obligation_tracker.utils.validation import validate_date_range, validate_uuid_format

# Настройка логирования
logger = logging.getLogger(__name__)


def get_obligations(
    session: Session,
    owner_id: Optional[str] = None,
    active_only: bool = False
) -> List[ObligationDB]:
    """
    Получает обязательства с фильтрацией.

    Args:
        session: Активная сессия БД
        owner_id: Фильтр по владельцу (None = все)
        active_only: Только активные обязательства

    Returns:
        Список обязательств, отсортированный по дате создания

    Raises:
        SQLAlchemyError: При ошибках работы с базой данных
    """
    try:
        query = session.query(ObligationDB)
        if owner_id is not None:
            query = query.filter(ObligationDB.owner_id == owner_id)
        if active_only:
            query = query.filter(ObligationDB.is_active == True)  # noqa: E712
        obligations = query.order_by(ObligationDB.created_at).all()
        logger.info(f"Найдено {len(obligations)} обязательств")
        return obligations
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при получении обязательств: {e}")
        raise


def seed_period_records(
    session: Session,
    obligation_id: str,
    horizon: Tuple[date, date],
    now: Union[date, datetime, None] = None,
    cache: Optional[WindowCatalogCache] = None
) -> List[EventResult]:
    """
    Создаёт окна горизонта и записи периодов обязательства в них.

    Для каждой гранулярности отправляется отдельное событие WINDOW_CREATED
    с идентификаторами окон этой гранулярности.

    Returns:
        Результаты событий по гранулярностям
    """
    start_date, end_date = horizon
    validate_date_range(start_date, end_date)
    ensure_windows(session, start_date, end_date, cache)

    results: List[EventResult] = []
    for granularity in PeriodGranularity:
        window_ids = get_overlapping_windows(session, (start_date, end_date), granularity, cache)
        if not window_ids:
            continue
        results.append(on_obligation_event(
            session,
            obligation_id,
            ObligationEventKind.WINDOW_CREATED,
            WindowCreatedPayload(window_ids=window_ids),
            now=now,
            cache=cache,
        ))
    return results


def create_obligation(
    session: Session,
    obligation: ObligationCreate,
    now: Union[date, datetime, None] = None,
    horizon: Optional[Tuple[date, date]] = None,
    cache: Optional[WindowCatalogCache] = None
) -> ObligationDB:
    """
    Создаёт новое обязательство.

    Args:
        session: Активная сессия БД
        obligation: Данные обязательства (Pydantic модель)
        now: Опорная дата для расчёта статусов
        horizon: Диапазон (начало, конец) для заполнения записей периодов
        cache: Необязательный кэш каталога окон

    Returns:
        Созданное обязательство

    Raises:
        ValidationError: Если данные не прошли валидацию Pydantic
        SQLAlchemyError: При ошибках записи в базу данных
    """
    try:
        logger.debug(f"Создание обязательства: {obligation.custom_name}, сумма {obligation.amount}")

        db_obligation = ObligationDB(**obligation.model_dump(), transaction_ids=[])
        session.add(db_obligation)
        session.commit()
        session.refresh(db_obligation)

        logger.info(f"Обязательство успешно создано с ID: {db_obligation.id}")

    except SQLAlchemyError as e:
        logger.error(f"Ошибка при сохранении обязательства в БД: {e}")
        session.rollback()
        raise

    if horizon is not None:
        seed_period_records(session, db_obligation.id, horizon, now, cache)
    return db_obligation


def _sync_transaction_links(
    session: Session,
    obligation_id: str,
    added_ids: List[str],
    removed_ids: List[str]
) -> None:
    # Привязка транзакции к обязательству исключительная
    for transaction_id in added_ids:
        row = session.get(TransactionDB, transaction_id)
        if row is None:
            raise BusinessLogicError(f"Транзакция {transaction_id} не найдена")
        if row.obligation_id not in (None, obligation_id):
            raise BusinessLogicError(
                f"Транзакция {transaction_id} уже привязана к обязательству {row.obligation_id}"
            )
        row.obligation_id = obligation_id
    for transaction_id in removed_ids:
        row = session.get(TransactionDB, transaction_id)
        if row is not None and row.obligation_id == obligation_id:
            row.obligation_id = None


def edit_obligation(
    session: Session,
    obligation_id: str,
    update: ObligationUpdate,
    now: Union[date, datetime, None] = None,
    cache: Optional[WindowCatalogCache] = None
) -> EventResult:
    """
    Изменяет обязательство и пересчитывает его записи периодов.

    Обновляются только явно указанные поля. Состояние до и после изменения
    передаётся координатору событием OBLIGATION_EDITED.

    Returns:
        EventResult с результатами пересчёта по гранулярностям

    Raises:
        ObligationNotFoundError: Если обязательство не найдено
        BusinessLogicError: Если добавленная транзакция не найдена или принадлежит другому обязательству
        SQLAlchemyError: При ошибках работы с базой данных
    """
    validate_uuid_format(obligation_id, "obligation_id")
    try:
        row = session.get(ObligationDB, obligation_id)
        if row is None:
            error_msg = f"Обязательство с ID {obligation_id} не найдено"
            logger.error(error_msg)
            raise ObligationNotFoundError(error_msg)

        before = Obligation.model_validate(row)
        changes = update.model_dump(exclude_unset=True, exclude_none=True)

        if "transaction_ids" in changes:
            new_ids = list(dict.fromkeys(changes["transaction_ids"]))
            _sync_transaction_links(
                session,
                obligation_id,
                [tid for tid in new_ids if tid not in before.transaction_ids],
                [tid for tid in before.transaction_ids if tid not in new_ids],
            )
            changes["transaction_ids"] = new_ids

        for field, value in changes.items():
            setattr(row, field, value)

        session.commit()
        session.refresh(row)
        after = Obligation.model_validate(row)
        logger.info(f"Обязательство {obligation_id} обновлено, поля: {list(changes)}")

    except BusinessLogicError as e:
        logger.error(f"Ошибка при изменении обязательства {obligation_id}: {e}")
        session.rollback()
        raise
    except SQLAlchemyError as e:
        logger.error(f"Ошибка при сохранении обязательства {obligation_id}: {e}")
        session.rollback()
        raise

    return on_obligation_event(
        session,
        obligation_id,
        ObligationEventKind.OBLIGATION_EDITED,
        ObligationEditedPayload(before=before, after=after),
        now=now,
        cache=cache,
    )


def deactivate_obligation(
    session: Session,
    obligation_id: str,
    now: Union[date, datetime, None] = None
) -> EventResult:
    """
    Деактивирует обязательство.

    Записи без оплаченных вхождений перестают ожидать платежи,
    история оплаченных периодов сохраняется.
    """
    logger.info(f"Деактивация обязательства {obligation_id}")
    return edit_obligation(session, obligation_id, ObligationUpdate(is_active=False), now)
