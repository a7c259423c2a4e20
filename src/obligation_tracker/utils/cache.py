"""
Модуль кэширования данных приложения.
Обеспечивает хранение каталога окон периодов в памяти для ускорения поиска.

Кэш не является глобальным: владелец (процесс или вызывающий код) создаёт
экземпляр WindowCatalogCache и явно передаёт его в сервисы, а устаревание
проверяется явным вызовом refresh(now).
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Any, TypeVar, Generic
from threading import Lock

from obligation_tracker.models import PeriodGranularity, PeriodWindow

logger = logging.getLogger(__name__)

T = TypeVar('T')

class CacheStore(Generic[T]):
    """Хранилище кэша для определенного типа данных с ограниченным временем жизни."""

    def __init__(self, name: str, ttl_seconds: Optional[float] = None):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[Any, T] = {}
        self._list_cache: Optional[List[T]] = None
        self._loaded_at: Optional[datetime] = None
        self._lock = Lock()

    def get(self, key: Any) -> Optional[T]:
        """Получение элемента по ключу."""
        with self._lock:
            return self._cache.get(key)

    def set(self, key: Any, value: T):
        """Сохранение элемента."""
        with self._lock:
            self._cache[key] = value
            # Состав изменился, список больше не полный
            self._list_cache = None

    def get_all(self) -> Optional[List[T]]:
        """Получение всех элементов (если они закэшированы списком)."""
        with self._lock:
            return self._list_cache

    def set_all(self, items: List[T], key_extractor: Callable[[T], Any], now: Optional[datetime] = None):
        """Сохранение списка элементов."""
        with self._lock:
            self._list_cache = list(items)
            self._cache.clear()
            for item in items:
                self._cache[key_extractor(item)] = item
            self._loaded_at = now or datetime.now()

    def is_expired(self, now: datetime) -> bool:
        """Проверка истечения времени жизни данных."""
        with self._lock:
            if self._loaded_at is None or self.ttl_seconds is None:
                return False
            return (now - self._loaded_at).total_seconds() > self.ttl_seconds

    def refresh(self, now: datetime) -> bool:
        """
        Сбрасывает кэш, если истекло время жизни.

        Returns:
            True, если кэш был сброшен
        """
        if self.is_expired(now):
            self.invalidate()
            return True
        return False

    def invalidate(self):
        """Полная очистка кэша."""
        with self._lock:
            self._cache.clear()
            self._list_cache = None
            self._loaded_at = None
            logger.debug(f"Кэш '{self.name}' сброшен")


class WindowCatalogCache:
    """
    Кэш каталога окон периодов, по одному хранилищу на гранулярность.

    Example:
        >>> cache = WindowCatalogCache(ttl_seconds=300)
        >>> cache.refresh(datetime.now())
        >>> get_overlapping_windows(session, date(2025, 1, 15), PeriodGranularity.WEEKLY, cache=cache)
    """

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.stores: Dict[PeriodGranularity, CacheStore[PeriodWindow]] = {
            granularity: CacheStore(f"windows:{granularity.value}", ttl_seconds)
            for granularity in PeriodGranularity
        }

    def get_windows(self, granularity: PeriodGranularity) -> Optional[List[PeriodWindow]]:
        """Окна гранулярности, если они загружены."""
        return self.stores[granularity].get_all()

    def set_windows(
        self,
        granularity: PeriodGranularity,
        windows: List[PeriodWindow],
        now: Optional[datetime] = None
    ) -> None:
        """Сохраняет полный список окон гранулярности."""
        self.stores[granularity].set_all(windows, lambda w: w.id, now)

    def get_window(self, window_id: str) -> Optional[PeriodWindow]:
        """Поиск окна по идентификатору среди загруженных."""
        for store in self.stores.values():
            window = store.get(window_id)
            if window is not None:
                return window
        return None

    def refresh(self, now: datetime) -> int:
        """
        Сбрасывает устаревшие хранилища.

        Returns:
            Количество сброшенных хранилищ
        """
        return sum(1 for store in self.stores.values() if store.refresh(now))

    def clear_all(self):
        """Очистка всех хранилищ."""
        for store in self.stores.values():
            store.invalidate()
