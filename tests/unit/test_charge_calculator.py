"""Unit tests for charge calculation order and precision."""

from decimal import Decimal

import pytest

from src.services.charge_calculator import ChargeCalculator, money
from src.services.config import BillingSettings


class TestChargeCalculator:
    """Test tax, senior discount and penalty ordering."""

    @pytest.fixture
    def calculator(self):
        return ChargeCalculator()

    def test_minimum_charge_non_senior(self, calculator):
        breakdown = calculator.compute(5, is_senior=False)

        assert breakdown.water_charge == Decimal("191.00")
        assert breakdown.tax == Decimal("3.82")
        assert breakdown.senior_discount == Decimal("0")
        assert breakdown.subtotal_before_penalty == Decimal("194.82")
        assert breakdown.penalty == Decimal("19.482")
        assert breakdown.total_due == Decimal("214.302")

    def test_senior_discount_before_penalty(self, calculator):
        breakdown = calculator.compute(25, is_senior=True)

        assert breakdown.water_charge == Decimal("517.50")
        assert breakdown.tax == Decimal("10.35")
        assert breakdown.senior_discount == Decimal("26.3925")
        assert breakdown.subtotal_before_penalty == Decimal("501.4575")
        # Penalty on the post-discount amount, no intermediate rounding
        assert breakdown.penalty == Decimal("50.14575")
        assert breakdown.total_due == Decimal("551.60325")

    def test_zero_consumption(self, calculator):
        breakdown = calculator.compute(0, is_senior=True)
        assert breakdown.total_due == Decimal("0")
        assert breakdown.penalty == Decimal("0")

    def test_deterministic(self, calculator):
        assert calculator.compute(37, True) == calculator.compute(37, True)

    @pytest.mark.parametrize("consumption", [0, 1, 9, 10, 49, 51, 250])
    def test_total_never_negative(self, calculator, consumption):
        for is_senior in (False, True):
            assert calculator.compute(consumption, is_senior).total_due >= 0

    def test_breakdown_is_immutable(self, calculator):
        breakdown = calculator.compute(5, False)
        with pytest.raises(Exception):
            breakdown.total_due = Decimal("1")

    def test_from_settings(self):
        settings = BillingSettings(
            _env_file=None, tax_rate=Decimal("0"), penalty_rate=Decimal("0")
        )
        breakdown = ChargeCalculator.from_settings(settings).compute(5, False)
        assert breakdown.total_due == Decimal("191.00")


class TestMoney:
    def test_rounds_half_up(self):
        assert money(Decimal("214.305")) == Decimal("214.31")
        assert money(Decimal("551.60325")) == Decimal("551.60")
        assert money(Decimal("19.482")) == Decimal("19.48")
