"""Tests for pence arithmetic."""

from decimal import Decimal

import pytest

from petprint.money import as_rate, percent_of, to_major


class TestPercentOf:
    """Percentages of pence amounts, rounded half up."""

    def test_rounds_half_up(self):
        """333p at 15% is 49.95p and rounds to 50p."""
        assert percent_of(333, Decimal("15")) == 50

    def test_exact_half_rounds_up(self):
        """250p at 1% is 2.5p and rounds to 3p, not banker's 2p."""
        assert percent_of(250, 1) == 3

    def test_rounds_down_below_half(self):
        assert percent_of(333, 10) == 33

    @pytest.mark.parametrize(
        "amount,rate,expected",
        [
            (10000, Decimal("20.00"), 2000),
            (10000, Decimal("5.00"), 500),
            (5000, Decimal("10.00"), 500),
            (1999, Decimal("12.50"), 250),
        ],
    )
    def test_commission_schedule(self, amount, rate, expected):
        assert percent_of(amount, rate) == expected

    def test_float_rate_has_no_binary_noise(self):
        """0.1% of 5000p is exactly 5p."""
        assert percent_of(5000, 0.1) == 5

    def test_zero(self):
        assert percent_of(0, 20) == 0
        assert percent_of(1000, 0) == 0

    def test_returns_int(self):
        assert isinstance(percent_of(333, 15), int)


class TestConversions:
    def test_to_major(self):
        assert to_major(12345) == Decimal("123.45")
        assert to_major(5) == Decimal("0.05")

    def test_to_major_none(self):
        assert to_major(None) == Decimal("0.00")

    def test_as_rate_passthrough(self):
        rate = Decimal("12.50")
        assert as_rate(rate) is rate
        assert as_rate("7.5") == Decimal("7.5")
