
import pytest
import uuid
from datetime import date
from decimal import Decimal
from hypothesis import given, strategies as st
from obligation_tracker.utils.money import sum_money, to_money, to_rate
from obligation_tracker.utils.validation import validate_date_range, validate_uuid_format, validate_window_id

def test_validate_uuid_format_valid():
    """Проверка валидации валидного UUID."""
    valid_uuid = str(uuid.uuid4())
    validate_uuid_format(valid_uuid, "obligation_id")  # Не должно выбросить ошибку

def test_validate_uuid_format_invalid():
    """Проверка валидации невалидного UUID."""
    with pytest.raises(ValueError, match="Невалидный формат"):
        validate_uuid_format("not-a-uuid", "obligation_id")

@given(st.text())
def test_uuid_validation_rejects_invalid_strings(invalid_string):
    """
    Property 1: Любая строка, не являющаяся UUID, отклоняется.
    """
    # Исключаем случайно валидные UUID
    try:
        uuid.UUID(invalid_string)
        return
    except ValueError:
        pass

    with pytest.raises(ValueError, match="Невалидный формат"):
        validate_uuid_format(invalid_string, "obligation_id")

@given(st.uuids())
def test_uuid_validation_accepts_valid_uuids(valid_uuid):
    """
    Проверяет, что валидные UUID принимаются.
    """
    validate_uuid_format(str(valid_uuid), "obligation_id")

def test_validate_date_range():
    """Диапазон из одного дня допустим, обратный - нет."""
    validate_date_range(date(2025, 1, 1), date(2025, 1, 1))

    with pytest.raises(ValueError, match="не может быть позже"):
        validate_date_range(date(2025, 1, 2), date(2025, 1, 1))

@pytest.mark.parametrize("value, expected", [
    (Decimal("10.005"), Decimal("10.01")),
    (Decimal("10.004"), Decimal("10.00")),
    (0.1 + 0.2, Decimal("0.30")),
    ("1000", Decimal("1000.00")),
    (-2.345, Decimal("-2.35")),
])
def test_to_money_rounds_half_up(value, expected):
    """Суммы округляются до копеек по правилу ROUND_HALF_UP."""
    assert to_money(value) == expected

def test_to_rate():
    """Дневная ставка хранится с 4 знаками."""
    assert to_rate(Decimal("1000") / 30) == Decimal("33.3333")

@given(st.lists(st.decimals(min_value=Decimal("-1000"), max_value=Decimal("1000"), places=2), max_size=20))
def test_sum_money_is_exact_for_cents(values):
    """
    Property 2: Сумма значений с копейками не теряет точность.
    """
    assert sum_money(values) == sum(values, Decimal("0.00"))

@pytest.mark.parametrize("window_id", ["2025M01", "2025M12", "2025BM02A", "2025BM02B", "2024W1229", "2025W0105"])
def test_validate_window_id_accepts_all_granularities(window_id):
    """Месячные, полумесячные и недельные идентификаторы принимаются."""
    validate_window_id(window_id)

@pytest.mark.parametrize("window_id", ["2025M13", "2025M1", "2025BM02C", "2025W1340", "25M01", "2025-01", "", None])
def test_validate_window_id_rejects_malformed(window_id):
    """Прочие строки и не-строки отклоняются."""
    with pytest.raises(ValueError, match="Невалидный идентификатор окна"):
        validate_window_id(window_id)
