"""
Проверки входных данных сервисов: идентификаторы обязательств, окон и диапазоны дат.
"""

import re
import uuid
import logging
from datetime import date

logger = logging.getLogger(__name__)

# 2025M01, 2025BM01A, 2024W1229
WINDOW_ID_PATTERN = re.compile(r"^\d{4}(M(0[1-9]|1[0-2])|BM(0[1-9]|1[0-2])[AB]|W(0[1-9]|1[0-2])(0[1-9]|[12]\d|3[01]))$")


def validate_uuid_format(id_value: str, field_name: str = "ID") -> None:
    """
    Проверяет, что значение является UUID.

    Args:
        id_value: Проверяемое значение
        field_name: Имя поля для сообщения об ошибке

    Raises:
        ValueError: Если значение не является UUID
    """
    try:
        uuid.UUID(id_value)
    except (ValueError, TypeError, AttributeError):
        error_msg = f'Невалидный формат {field_name}: {id_value}. Ожидается UUID формата: 550e8400-e29b-41d4-a716-446655440000'
        logger.error(error_msg)
        raise ValueError(error_msg)


def validate_window_id(window_id: str) -> None:
    """
    Проверяет формат идентификатора окна периода.

    Raises:
        ValueError: Если идентификатор не соответствует ни одной гранулярности
    """
    if not isinstance(window_id, str) or WINDOW_ID_PATTERN.match(window_id) is None:
        error_msg = f"Невалидный идентификатор окна: {window_id}"
        logger.error(error_msg)
        raise ValueError(error_msg)


def validate_date_range(start_date: date, end_date: date) -> None:
    """Начало диапазона не может быть позже конца (ValueError)."""
    if start_date > end_date:
        error_msg = f"Дата начала ({start_date}) не может быть позже даты окончания ({end_date})"
        logger.error(error_msg)
        raise ValueError(error_msg)
