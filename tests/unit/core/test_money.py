"""Unit tests for money rounding and minor unit conversion."""

from decimal import Decimal

import pytest

from billflow.core.money import from_minor_units, round_money, to_minor_units


class TestRoundMoney:
    """Tests for round_money."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (Decimal("10.005"), Decimal("10.01")),
            (Decimal("10.004"), Decimal("10.00")),
            (Decimal("-2.345"), Decimal("-2.35")),
            (0.1 + 0.2, Decimal("0.30")),
            ("7", Decimal("7.00")),
        ],
    )
    def test_rounds_half_away_from_zero(self, value, expected):
        """Halves round away from zero and floats do not leak binary artefacts."""
        assert round_money(value) == expected


class TestMinorUnits:
    """Tests for gateway amount conversion."""

    def test_two_decimal_currency(self):
        """USD amounts are sent in cents."""
        assert to_minor_units(Decimal("99.00"), "usd") == 9900
        assert to_minor_units(Decimal("12.345"), "USD") == 1235
        assert from_minor_units(9900, "USD") == Decimal("99.00")

    def test_zero_decimal_currency(self):
        """JPY has no minor unit."""
        assert to_minor_units(Decimal("500"), "JPY") == 500
        assert from_minor_units(500, "jpy") == Decimal("500")
