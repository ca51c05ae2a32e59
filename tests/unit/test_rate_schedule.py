"""Unit tests for the tiered rate schedule."""

from decimal import Decimal

import pytest

from src.services.rate_schedule import RateSchedule, RateTier


class TestRateSchedule:
    """Test tier math and the minimum charge."""

    @pytest.fixture
    def schedule(self):
        return RateSchedule()

    def test_zero_consumption_is_free(self, schedule):
        assert schedule.charge(0) == Decimal("0")

    def test_small_consumption_pays_minimum(self, schedule):
        """5 m3 costs 95.50 by the tiers, floored to 191.00."""
        assert schedule.charge(5) == Decimal("191.00")

    def test_full_first_band_equals_minimum(self, schedule):
        assert schedule.charge(10) == Decimal("191.00")

    def test_second_band_rate(self, schedule):
        assert schedule.charge(11) == Decimal("212.10")

    def test_three_bands(self, schedule):
        # 10 x 19.10 + 10 x 21.10 + 5 x 23.10
        assert schedule.charge(25) == Decimal("517.50")

    def test_unbounded_last_band(self, schedule):
        # 191 + 211 + 231 + 251 + 271 + 10 x 29.10
        assert schedule.charge(60) == Decimal("1446.00")

    def test_fractional_consumption(self, schedule):
        assert schedule.charge(Decimal("10.5")) == Decimal("201.55")

    def test_negative_consumption_rejected(self, schedule):
        with pytest.raises(ValueError, match="must not be negative"):
            schedule.charge(-1)

    def test_minimum_is_not_stacked_on_higher_tiers(self, schedule):
        """Above the floor the tier sum is charged as is."""
        assert schedule.charge(20) == Decimal("402.00")

    def test_custom_minimum(self):
        schedule = RateSchedule(minimum_charge=Decimal("50.00"))
        assert schedule.charge(1) == Decimal("50.00")
        assert schedule.charge(3) == Decimal("57.30")

    def test_custom_tiers(self):
        schedule = RateSchedule(
            tiers=[RateTier(Decimal("5"), Decimal("1")), RateTier(None, Decimal("2"))],
            minimum_charge=Decimal("0"),
        )
        assert schedule.charge(8) == Decimal("11")

    def test_last_tier_must_be_unbounded(self):
        with pytest.raises(ValueError, match="unbounded"):
            RateSchedule(tiers=[RateTier(Decimal("10"), Decimal("1"))])

    def test_band_breakdown(self, schedule):
        rows = schedule.band_breakdown(25)
        assert [units for units, _, _ in rows] == [Decimal("10"), Decimal("10"), Decimal("5")]
        assert sum(amount for _, _, amount in rows) == Decimal("517.50")
