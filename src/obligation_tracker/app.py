from datetime import date
from typing import Optional

from obligation_tracker.config import settings
from obligation_tracker.database import init_db, get_db_session
from obligation_tracker.services.calendar_service import ensure_windows
from obligation_tracker.utils.cache import WindowCatalogCache
from obligation_tracker.utils.logger import setup_logging, get_logger

logger = get_logger(__name__)


def main(year: Optional[int] = None) -> int:
    # 1. Настройка логирования
    setup_logging()
    logger.info(f"Запуск {settings.APP_NAME} {settings.VERSION}")

    # 2. Инициализация БД
    try:
        init_db()
    except Exception as e:
        logger.error(f"Ошибка инициализации БД: {e}")
        return 1

    # 3. Каталог окон на текущий год
    target_year = year or date.today().year
    cache = WindowCatalogCache(ttl_seconds=settings.window_cache_ttl_seconds)
    with get_db_session() as session:
        created = ensure_windows(session, date(target_year, 1, 1), date(target_year, 12, 31), cache)
    logger.info(f"Каталог окон на {target_year} год готов, добавлено окон: {len(created)}")
    return 0
