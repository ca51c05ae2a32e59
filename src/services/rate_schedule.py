"""Tiered water rate schedule.

Consumption (cubic meters) is split into bands and each band is charged at its
own rate per unit:

    [1-10]  19.10     [31-40] 25.10
    [11-20] 21.10     [41-50] 27.10
    [21-30] 23.10     [51+]   29.10

Any nonzero consumption is billed at least the minimum charge (191.00, the price
of a full first band). Zero consumption costs nothing.
"""

from decimal import Decimal
from typing import NamedTuple, Sequence


class RateTier(NamedTuple):
    """One consumption band: units it covers (None = unbounded) and rate per unit."""

    units: Decimal | None
    rate: Decimal


DEFAULT_TIERS: tuple[RateTier, ...] = (
    RateTier(Decimal("10"), Decimal("19.10")),
    RateTier(Decimal("10"), Decimal("21.10")),
    RateTier(Decimal("10"), Decimal("23.10")),
    RateTier(Decimal("10"), Decimal("25.10")),
    RateTier(Decimal("10"), Decimal("27.10")),
    RateTier(None, Decimal("29.10")),
)

DEFAULT_MINIMUM_CHARGE = Decimal("191.00")


class RateSchedule:
    """Pure consumption -> water charge function."""

    def __init__(
        self,
        tiers: Sequence[RateTier] = DEFAULT_TIERS,
        minimum_charge: Decimal = DEFAULT_MINIMUM_CHARGE,
    ):
        if not tiers or tiers[-1].units is not None:
            raise ValueError("Rate schedule must end with an unbounded tier")
        if any(tier.units is None for tier in tiers[:-1]):
            raise ValueError("Only the last tier may be unbounded")
        self.tiers = tuple(tiers)
        self.minimum_charge = minimum_charge

    def charge(self, consumption: Decimal | int) -> Decimal:
        """Water charge for the consumption.

        Args:
            consumption: Cubic meters consumed (non-negative)

        Returns:
            Sum of band units x band rate, floored at the minimum charge when
            consumption is nonzero

        Raises:
            ValueError: If consumption is negative
        """
        units_left = Decimal(consumption)
        if units_left < 0:
            raise ValueError(f"Consumption must not be negative: {consumption}")
        if units_left == 0:
            return Decimal("0")

        total = Decimal("0")
        for tier in self.tiers:
            if units_left <= 0:
                break
            in_band = units_left if tier.units is None else min(units_left, tier.units)
            total += in_band * tier.rate
            units_left -= in_band

        return max(total, self.minimum_charge)

    def band_breakdown(self, consumption: Decimal | int) -> list[tuple[Decimal, Decimal, Decimal]]:
        """(units, rate, amount) per band the consumption spans, before the floor."""
        units_left = Decimal(consumption)
        rows = []
        for tier in self.tiers:
            if units_left <= 0:
                break
            in_band = units_left if tier.units is None else min(units_left, tier.units)
            rows.append((in_band, tier.rate, in_band * tier.rate))
            units_left -= in_band
        return rows


__all__ = ["DEFAULT_MINIMUM_CHARGE", "DEFAULT_TIERS", "RateSchedule", "RateTier"]
