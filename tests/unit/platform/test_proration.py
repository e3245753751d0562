"""Unit tests for proration arithmetic."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from billflow.core.exceptions import InvalidInputError
from billflow.platform.billing.proration import calculate_proration

PERIOD_START = datetime(2024, 1, 1)
PERIOD_END = datetime(2024, 1, 31)  # 30 days


class TestCalculateProration:
    """Tests for calculate_proration."""

    def test_upgrade_with_ten_days_left(self):
        """A 30 -> 60 change with 10 of 30 days left credits 10 and charges 20."""
        # Act
        result = calculate_proration(
            PERIOD_START,
            PERIOD_END,
            Decimal("30"),
            Decimal("60"),
            change_date=PERIOD_END - timedelta(days=10),
        )

        # Assert
        assert result.credit == Decimal("10.00")
        assert result.charge == Decimal("20.00")
        assert result.net_amount == Decimal("10.00")

    def test_change_at_period_start_credits_everything(self):
        """At the start of the period the whole current amount is credited."""
        result = calculate_proration(
            PERIOD_START, PERIOD_END, Decimal("30"), Decimal("60"), change_date=PERIOD_START
        )

        assert result.credit == Decimal("30.00")
        assert result.charge == Decimal("60.00")

    def test_change_at_period_end_credits_nothing(self):
        """At the end of the period nothing is left to credit or charge."""
        result = calculate_proration(
            PERIOD_START, PERIOD_END, Decimal("30"), Decimal("60"), change_date=PERIOD_END
        )

        assert result.credit == Decimal("0.00")
        assert result.charge == Decimal("0.00")
        assert result.net_amount == Decimal("0.00")

    def test_downgrade_has_negative_net(self):
        """Moving to a cheaper price yields a net credit."""
        result = calculate_proration(
            PERIOD_START,
            PERIOD_END,
            Decimal("60"),
            Decimal("30"),
            change_date=PERIOD_END - timedelta(days=15),
        )

        assert result.net_amount == Decimal("-15.00")

    def test_same_day_period(self):
        """A period shorter than a day charges the new price in full."""
        start = datetime(2024, 1, 1, 8)
        result = calculate_proration(
            start, start + timedelta(hours=4), Decimal("30"), Decimal("60"), change_date=start
        )

        assert result.credit == Decimal("0.00")
        assert result.charge == Decimal("60.00")
        assert result.net_amount == Decimal("60.00")

    def test_rejects_change_outside_period(self):
        """A change date after the period end is invalid input."""
        with pytest.raises(InvalidInputError):
            calculate_proration(
                PERIOD_START,
                PERIOD_END,
                Decimal("30"),
                Decimal("60"),
                change_date=PERIOD_END + timedelta(days=1),
            )
