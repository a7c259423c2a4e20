"""
Логирование движка сверки.

Файл сеанса пишется в JSON (одна запись на строку), консоль получает
короткий текстовый формат. Контекст события (obligation_id, window_id,
суммы, даты, гранулярности) передаётся через extra и попадает в JSON
как отдельные поля.
"""

import json
import logging
import sys
from enum import Enum
from pathlib import Path
from datetime import datetime, date
from typing import Any, Dict, Optional
from decimal import Decimal

from obligation_tracker.config import settings

# Поля LogRecord, которые не считаются контекстом события
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}

_CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(module)s:%(funcName)s | %(message)s'


def _to_json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {str(k): _to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json_value(item) for item in value]
    if hasattr(value, '__dict__'):
        return str(value)
    return value


class JsonFormatter(logging.Formatter):
    """Запись лога в одну JSON-строку с контекстом из extra."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S'),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        entry.update(
            (key, _to_json_value(value))
            for key, value in record.__dict__.items()
            if key not in _RECORD_FIELDS
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(log_file: Optional[str] = None) -> Optional[Path]:
    """
    Перенастраивает корневой логгер на текущий сеанс.

    Файл сеанса (obligation_tracker_YYYYMMDD_HHMMSS.log) создаётся в
    директории базового файла лога (по умолчанию settings.log_file).
    Если файл создать нельзя, остаётся только консоль.

    Returns:
        Путь к файлу сеанса или None
    """
    log_dir = Path(log_file or settings.log_file).parent

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(fmt=_CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    session_log_file = log_dir / f"obligation_tracker_{datetime.now():%Y%m%d_%H%M%S}.log"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(session_log_file, encoding='utf-8')
    except OSError as e:
        logging.error(f"Файл лога сеанса недоступен, логи только в консоли: {e}")
        return None

    file_handler.setFormatter(JsonFormatter())
    root_logger.addHandler(file_handler)

    logging.info(f"Лог сеанса: {session_log_file}")
    return session_log_file


def get_logger(name: str) -> logging.Logger:
    """Логгер модуля (обычно get_logger(__name__))."""
    return logging.getLogger(name)
