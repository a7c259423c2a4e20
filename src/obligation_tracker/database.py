"""
Подключение к хранилищу записей периодов.

Одно подключение на процесс; каждое событие обязательства или транзакции
обрабатывается в собственной сессии. Путь к файлу SQLite по умолчанию
берётся из settings.db_path.
"""

from contextlib import contextmanager
from typing import Generator, Optional
import logging
import atexit

from sqlalchemy import create_engine, event, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from obligation_tracker.config import settings

logger = logging.getLogger(__name__)


_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None
_close_registered = False


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record) -> None:
    # Записи периодов ссылаются на обязательства и окна каталога
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    """Создаёт Engine; для SQLite включает проверку внешних ключей."""
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url)


def init_db(database_url: Optional[str] = None) -> Engine:
    """
    Подключается к хранилищу и создаёт схему (обязательства, транзакции,
    каталог окон, записи периодов).

    Повторный вызов заменяет текущее подключение.
    """
    global _engine, _SessionLocal, _close_registered

    from obligation_tracker.models import Base

    if _engine is not None:
        close_db()

    url = database_url or f"sqlite:///{settings.db_path}"
    logger.info(f"Подключение к хранилищу записей периодов: {url}")

    try:
        engine = build_engine(url)
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.error(f"Не удалось подготовить схему хранилища: {e}")
        raise

    _engine = engine
    _SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)

    if not _close_registered:
        atexit.register(close_db)
        _close_registered = True

    logger.info(f"Схема готова, таблиц: {len(Base.metadata.tables)}")
    return engine


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Сессия для обработки одного события.

    Фиксацию выполняют сервисы; при исключении незафиксированные
    изменения откатываются, исключение пробрасывается дальше.

    Raises:
        RuntimeError: Если init_db() ещё не вызывался
    """
    if _SessionLocal is None:
        error_msg = "Хранилище не подключено: сначала вызовите init_db()"
        logger.error(error_msg)
        raise RuntimeError(error_msg)

    session: Session = _SessionLocal()
    try:
        yield session
    except SQLAlchemyError as e:
        logger.error(f"Ошибка хранилища, откат сессии: {e}")
        session.rollback()
        raise
    except Exception as e:
        logger.warning(f"Обработка события прервана ({type(e).__name__}), откат сессии")
        session.rollback()
        raise
    finally:
        session.close()


get_db = get_db_session


def close_db() -> None:
    """Освобождает пул соединений; безопасен при повторном вызове."""
    global _engine, _SessionLocal

    if _engine is None:
        return

    _engine.dispose()
    _engine = None
    _SessionLocal = None
    logger.info("Подключение к хранилищу закрыто")
