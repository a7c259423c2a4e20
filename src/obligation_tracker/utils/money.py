"""
Денежные вычисления: округление сумм до копеек.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
RATE_PRECISION = Decimal('0.0001')


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Округляет значение до копеек (ROUND_HALF_UP)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value: Union[Decimal, int, float, str]) -> Decimal:
    """Округляет дневную ставку до 4 знаков."""
    return Decimal(str(value)).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    """Сумма значений с округлением результата до копеек."""
    return to_money(sum(values, ZERO))
