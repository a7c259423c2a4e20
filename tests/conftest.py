"""
Конфигурация pytest для тестов obligation_tracker.
"""
import os
import tempfile

# Директория данных задаётся до импорта config, чтобы тесты не трогали домашний каталог
os.environ.setdefault("OBLIGATION_TRACKER_DATA_DIR", tempfile.mkdtemp(prefix="obligation_tracker_test_"))

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from obligation_tracker.config import settings
from obligation_tracker.models import Base, Frequency, TransactionType
from obligation_tracker.services.calendar_service import ensure_windows
from obligation_tracker.utils.cache import WindowCatalogCache

from test_factories import create_test_obligation


@pytest.fixture(autouse=True)
def reset_engine_settings():
    """Возвращает параметры движка к значениям по умолчанию после каждого теста."""
    yield
    settings.reset_engine_defaults()


@pytest.fixture
def db_session():
    """
    Централизованная фикстура для создания временной БД и сессии.
    Автоматически закрывает соединение после теста.
    """
    engine = create_engine("sqlite:///:memory:")

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    # Закрываем сессию и соединение
    session.close()
    engine.dispose()


@pytest.fixture
def window_cache():
    """Кэш каталога окон с TTL по умолчанию."""
    return WindowCatalogCache(ttl_seconds=settings.window_cache_ttl_seconds)


@pytest.fixture
def windows_2025(db_session):
    """Каталог окон всех гранулярностей на 2025 год."""
    return ensure_windows(db_session, date(2025, 1, 1), date(2025, 12, 31))


@pytest.fixture
def rent_obligation(db_session, windows_2025):
    """
    Ежемесячная аренда 1000.00 с 1-го числа.

    Returns:
        ObligationDB, сохранённый в БД
    """
    obligation = create_test_obligation(
        frequency=Frequency.MONTHLY,
        reference_date=date(2025, 1, 1),
        amount=Decimal("1000.00"),
        custom_name="Аренда",
    )
    db_session.add(obligation)
    db_session.commit()
    return obligation


@pytest.fixture
def salary_obligation(db_session, windows_2025):
    """
    Зарплата 2000.00 раз в две недели с 2025-01-03.

    Returns:
        ObligationDB, сохранённый в БД
    """
    obligation = create_test_obligation(
        type=TransactionType.INCOME,
        frequency=Frequency.BIWEEKLY,
        reference_date=date(2025, 1, 3),
        amount=Decimal("2000.00"),
        custom_name="Зарплата",
    )
    db_session.add(obligation)
    db_session.commit()
    return obligation
