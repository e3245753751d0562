"""Unit tests for billing period arithmetic."""

from datetime import datetime
from decimal import Decimal

import pytest

from billflow.core.exceptions import InvalidInputError
from billflow.core.money import round_money
from billflow.core.periods import (
    BillingInterval,
    add_interval,
    clamp_to_period,
    days_between,
    normalize_to_monthly,
)


class TestAddInterval:
    """Tests for add_interval."""

    @pytest.mark.parametrize(
        "interval, count, expected",
        [
            ("day", 3, datetime(2024, 1, 18, 12)),
            ("week", 2, datetime(2024, 1, 29, 12)),
            ("month", 1, datetime(2024, 2, 15, 12)),
            (BillingInterval.YEAR, 1, datetime(2025, 1, 15, 12)),
        ],
    )
    def test_steps(self, interval, count, expected):
        """Each interval unit advances the calendar by the expected amount."""
        assert add_interval(datetime(2024, 1, 15, 12), interval, count) == expected

    def test_month_end_is_clamped(self):
        """Jan 31 plus one month lands on the last day of February."""
        assert add_interval(datetime(2024, 1, 31), "month") == datetime(2024, 2, 29)
        assert add_interval(datetime(2023, 1, 31), "month") == datetime(2023, 2, 28)

    def test_rejects_non_positive_count(self):
        """A count below one is invalid input."""
        with pytest.raises(InvalidInputError):
            add_interval(datetime(2024, 1, 1), "month", 0)

    def test_rejects_unknown_interval(self):
        """Only day, week, month and year are intervals."""
        with pytest.raises(ValueError):
            add_interval(datetime(2024, 1, 1), "fortnight")


class TestPeriodHelpers:
    """Tests for days_between, clamp_to_period and normalize_to_monthly."""

    def test_days_between_truncates(self):
        """Partial days do not count."""
        assert days_between(datetime(2024, 1, 1), datetime(2024, 1, 3, 23)) == 2

    def test_clamp_to_period(self):
        """Moments outside the period snap to its bounds."""
        start, end = datetime(2024, 1, 1), datetime(2024, 2, 1)
        assert clamp_to_period(datetime(2023, 12, 1), start, end) == start
        assert clamp_to_period(datetime(2024, 3, 1), start, end) == end
        assert clamp_to_period(datetime(2024, 1, 10), start, end) == datetime(2024, 1, 10)

    @pytest.mark.parametrize(
        "interval, count, expected",
        [
            ("day", 1, Decimal("300")),
            ("week", 1, Decimal("40")),
            ("month", 1, Decimal("10")),
            ("month", 2, Decimal("5")),
            ("year", 1, Decimal("0.83")),
        ],
    )
    def test_normalize_to_monthly(self, interval, count, expected):
        """Per-period amounts are converted with the fixed monthly factors."""
        assert round_money(normalize_to_monthly(Decimal("10"), interval, count)) == expected
