"""Charge calculation: tiered water charge, tax, senior discount and penalty."""

from decimal import ROUND_HALF_UP, Decimal

from src.schemas.billing import ChargeBreakdown
from src.services.config import BillingSettings
from src.services.rate_schedule import RateSchedule

CENT = Decimal("0.01")


def money(amount: Decimal) -> Decimal:
    """Round to cents for presentation. Never used between calculation steps."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class ChargeCalculator:
    """Combine the rate schedule with tax, senior discount and penalty rules.

    Order matters: the penalty is computed on the post-discount amount.
    Intermediate values keep full Decimal precision.
    """

    def __init__(
        self,
        rate_schedule: RateSchedule | None = None,
        tax_rate: Decimal = Decimal("0.02"),
        senior_discount_rate: Decimal = Decimal("0.05"),
        penalty_rate: Decimal = Decimal("0.10"),
    ):
        self.rate_schedule = rate_schedule or RateSchedule()
        self.tax_rate = tax_rate
        self.senior_discount_rate = senior_discount_rate
        self.penalty_rate = penalty_rate

    @classmethod
    def from_settings(cls, settings: BillingSettings) -> "ChargeCalculator":
        return cls(
            rate_schedule=RateSchedule(minimum_charge=settings.minimum_charge),
            tax_rate=settings.tax_rate,
            senior_discount_rate=settings.senior_discount_rate,
            penalty_rate=settings.penalty_rate,
        )

    def compute(self, consumption: Decimal | int, is_senior: bool) -> ChargeBreakdown:
        """Compute the charge breakdown for a consumption.

        Args:
            consumption: Cubic meters consumed (non-negative)
            is_senior: Apply the senior discount

        Returns:
            ChargeBreakdown with unrounded amounts
        """
        water_charge = self.rate_schedule.charge(consumption)
        tax = water_charge * self.tax_rate
        subtotal = water_charge + tax
        senior_discount = subtotal * self.senior_discount_rate if is_senior else Decimal("0")
        subtotal_before_penalty = subtotal - senior_discount
        penalty = self.penalty_for(subtotal_before_penalty)

        return ChargeBreakdown(
            water_charge=water_charge,
            tax=tax,
            senior_discount=senior_discount,
            penalty=penalty,
            subtotal_before_penalty=subtotal_before_penalty,
            total_due=subtotal_before_penalty + penalty,
        )

    def penalty_for(self, amount_before_penalty: Decimal) -> Decimal:
        return amount_before_penalty * self.penalty_rate


__all__ = ["CENT", "ChargeCalculator", "money"]
