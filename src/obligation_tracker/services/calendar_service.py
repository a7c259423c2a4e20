"""
Сервис календарного разбиения на окна периодов.

Содержит функции для:
- Генерации окон трёх гранулярностей (месяц, неделя, половина месяца)
- Идемпотентного пополнения каталога окон в БД
- Поиска окон, пересекающих дату или диапазон дат (с явным кэшем)

Окна одной гранулярности не пересекаются и покрывают календарь без пропусков.
Недели начинаются в воскресенье; идентификатор недели строится по дате её
начала, поэтому неделя на стыке годов имеет единственный идентификатор.
"""

import logging
from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from obligation_tracker.models import PeriodGranularity, PeriodWindow, PeriodWindowDB
from obligation_tracker.utils.cache import WindowCatalogCache
from obligation_tracker.utils.exceptions import WindowNotFoundError
from obligation_tracker.utils.validation import validate_date_range, validate_window_id

# Настройка логирования
logger = logging.getLogger(__name__)

DateOrRange = Union[date, Tuple[date, date]]


def _month_end(year: int, month: int) -> date:
    return date(year, month, monthrange(year, month)[1])


def week_start(target_date: date) -> date:
    """
    Возвращает воскресенье, с которого начинается неделя, содержащая дату.

    Example:
        >>> week_start(date(2025, 1, 1))  # Среда
        date(2024, 12, 29)
    """
    # weekday(): понедельник = 0, воскресенье = 6
    return target_date - timedelta(days=(target_date.weekday() + 1) % 7)


def generate_monthly_windows(year: int) -> List[PeriodWindow]:
    """Окна календарных месяцев года."""
    return [
        PeriodWindow(
            id=f"{year}M{month:02d}",
            granularity=PeriodGranularity.MONTHLY,
            start_date=date(year, month, 1),
            end_date=_month_end(year, month),
            year=year,
        )
        for month in range(1, 13)
    ]


def generate_bi_monthly_windows(year: int) -> List[PeriodWindow]:
    """Окна половин месяцев: A = 1-15, B = 16-последний день."""
    windows: List[PeriodWindow] = []
    for month in range(1, 13):
        windows.append(PeriodWindow(
            id=f"{year}BM{month:02d}A",
            granularity=PeriodGranularity.BI_MONTHLY,
            start_date=date(year, month, 1),
            end_date=date(year, month, 15),
            year=year,
        ))
        windows.append(PeriodWindow(
            id=f"{year}BM{month:02d}B",
            granularity=PeriodGranularity.BI_MONTHLY,
            start_date=date(year, month, 16),
            end_date=_month_end(year, month),
            year=year,
        ))
    return windows


def generate_weekly_windows(year: int) -> List[PeriodWindow]:
    """
    Недельные окна (воскресенье-суббота), пересекающие указанный год.

    Первая неделя может начинаться в предыдущем году, последняя -
    заканчиваться в следующем.
    """
    windows: List[PeriodWindow] = []
    start = week_start(date(year, 1, 1))
    last_day = date(year, 12, 31)
    while start <= last_day:
        windows.append(PeriodWindow(
            id=f"{start:%Y}W{start:%m%d}",
            granularity=PeriodGranularity.WEEKLY,
            start_date=start,
            end_date=start + timedelta(days=6),
            year=start.year,
        ))
        start += timedelta(days=7)
    return windows


def generate_windows_for_year(year: int) -> List[PeriodWindow]:
    """
    Генерирует окна всех трёх гранулярностей для года.

    Returns:
        12 месячных, 24 полумесячных и 52-54 недельных окна
    """
    return (
        generate_monthly_windows(year)
        + generate_bi_monthly_windows(year)
        + generate_weekly_windows(year)
    )


def generate_windows(start_date: date, end_date: date) -> List[PeriodWindow]:
    """
    Генерирует окна всех гранулярностей, пересекающие диапазон [start_date, end_date].

    Raises:
        ValueError: Если start_date > end_date
    """
    validate_date_range(start_date, end_date)

    windows: List[PeriodWindow] = []
    seen = set()
    for year in range(start_date.year, end_date.year + 1):
        for window in generate_windows_for_year(year):
            if window.id in seen:
                continue
            if window.start_date <= end_date and window.end_date >= start_date:
                seen.add(window.id)
                windows.append(window)
    return windows


def ensure_windows(
    session: Session,
    start_date: date,
    end_date: date,
    cache: Optional[WindowCatalogCache] = None
) -> List[PeriodWindow]:
    """
    Пополняет каталог окон в БД для диапазона дат (идемпотентно).

    Args:
        session: Активная сессия БД
        start_date: Начало диапазона
        end_date: Конец диапазона
        cache: Кэш каталога, сбрасывается при появлении новых окон

    Returns:
        Список окон, созданных этим вызовом (пустой, если все уже были)

    Raises:
        ValueError: Если start_date > end_date
        SQLAlchemyError: При ошибках работы с БД
    """
    windows = generate_windows(start_date, end_date)

    try:
        ids = [w.id for w in windows]
        existing = {
            row[0] for row in session.query(PeriodWindowDB.id).filter(PeriodWindowDB.id.in_(ids)).all()
        }
        created = [w for w in windows if w.id not in existing]

        for window in created:
            session.add(PeriodWindowDB(
                id=window.id,
                granularity=window.granularity,
                start_date=window.start_date,
                end_date=window.end_date,
                year=window.year,
            ))

        if created:
            session.commit()
            if cache is not None:
                cache.clear_all()
            logger.info(f"Создано {len(created)} окон периодов для диапазона {start_date} - {end_date}")
        else:
            logger.debug(f"Каталог окон для диапазона {start_date} - {end_date} уже заполнен")

        return created

    except SQLAlchemyError as e:
        logger.error(f"Ошибка при создании окон периодов: {e}")
        session.rollback()
        raise


def _normalize_range(date_or_range: DateOrRange) -> Tuple[date, date]:
    if isinstance(date_or_range, tuple):
        start_date, end_date = date_or_range
        validate_date_range(start_date, end_date)
        return start_date, end_date
    return date_or_range, date_or_range


def _load_windows(session: Session, granularity: PeriodGranularity) -> List[PeriodWindow]:
    rows = session.query(PeriodWindowDB).filter(
        PeriodWindowDB.granularity == granularity
    ).order_by(PeriodWindowDB.start_date).all()
    return [PeriodWindow.model_validate(row) for row in rows]


def find_overlapping_windows(
    session: Session,
    date_or_range: DateOrRange,
    granularity: PeriodGranularity,
    cache: Optional[WindowCatalogCache] = None
) -> List[PeriodWindow]:
    """
    Возвращает окна гранулярности, пересекающие дату или диапазон, по возрастанию начала.

    При переданном кэше каталог гранулярности загружается целиком один раз
    и дальше фильтруется в памяти.
    """
    start_date, end_date = _normalize_range(date_or_range)

    try:
        if cache is not None:
            windows = cache.get_windows(granularity)
            if windows is None:
                windows = _load_windows(session, granularity)
                cache.set_windows(granularity, windows, datetime.now())
            return [w for w in windows if w.start_date <= end_date and w.end_date >= start_date]

        rows = session.query(PeriodWindowDB).filter(
            PeriodWindowDB.granularity == granularity,
            PeriodWindowDB.start_date <= end_date,
            PeriodWindowDB.end_date >= start_date
        ).order_by(PeriodWindowDB.start_date).all()
        return [PeriodWindow.model_validate(row) for row in rows]

    except SQLAlchemyError as e:
        logger.error(f"Ошибка при поиске окон {granularity.value} для {start_date} - {end_date}: {e}")
        raise


def get_overlapping_windows(
    session: Session,
    date_or_range: DateOrRange,
    granularity: PeriodGranularity,
    cache: Optional[WindowCatalogCache] = None
) -> List[str]:
    """
    Индексированный поиск идентификаторов окон, пересекающих дату или диапазон.

    Args:
        session: Активная сессия БД
        date_or_range: Дата или кортеж (начало, конец)
        granularity: Гранулярность окон
        cache: Необязательный кэш каталога окон

    Returns:
        Список идентификаторов окон (может быть пустым)
    """
    return [w.id for w in find_overlapping_windows(session, date_or_range, granularity, cache)]


def get_window(
    session: Session,
    window_id: str,
    cache: Optional[WindowCatalogCache] = None
) -> PeriodWindow:
    """
    Возвращает окно по идентификатору.

    Raises:
        ValueError: Если идентификатор окна имеет неверный формат
        WindowNotFoundError: Если окна нет в каталоге
    """
    validate_window_id(window_id)

    if cache is not None:
        cached = cache.get_window(window_id)
        if cached is not None:
            return cached

    row = session.get(PeriodWindowDB, window_id)
    if row is None:
        raise WindowNotFoundError(f"Окно периода {window_id} не найдено в каталоге")
    return PeriodWindow.model_validate(row)


def get_windows_by_ids(session: Session, window_ids: Iterable[str]) -> List[PeriodWindow]:
    """Пакетная загрузка окон; отсутствующие идентификаторы пропускаются."""
    ids = list(window_ids)
    if not ids:
        return []
    rows = session.query(PeriodWindowDB).filter(PeriodWindowDB.id.in_(ids)).all()
    return [PeriodWindow.model_validate(row) for row in rows]
