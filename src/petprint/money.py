"""Minor-currency-unit arithmetic.

Amounts are integers in pence everywhere inside the service; conversion to
pounds happens only when a response is rendered.
"""

from decimal import ROUND_HALF_UP, Decimal

_PENNY = Decimal("0.01")


def as_rate(value) -> Decimal:
    """Coerce a percentage (int, float, str or Decimal) to Decimal."""
    if isinstance(value, Decimal):
        return value
    # Via str so 0.1 stays 0.1
    return Decimal(str(value))


def percent_of(amount_minor: int, rate) -> int:
    """Return ``round(amount_minor * rate / 100)`` rounding half up.

    >>> percent_of(333, 15)
    50
    >>> percent_of(10000, 5)
    500
    """
    value = Decimal(int(amount_minor)) * as_rate(rate) / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major(amount_minor: int | None) -> Decimal:
    """Convert pence to pounds with two decimal places."""
    return (Decimal(int(amount_minor or 0)) / Decimal(100)).quantize(_PENNY)
