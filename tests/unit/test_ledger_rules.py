"""Unit tests for the overpayment absorption rule."""

from decimal import Decimal

from src.schemas.billing import ChargeBreakdown
from src.services.ledger_service import absorb_overpayment

PENALTY_RATE = Decimal("0.10")


def breakdown(base: str) -> ChargeBreakdown:
    amount = Decimal(base)
    return ChargeBreakdown(
        water_charge=amount,
        tax=Decimal("0"),
        senior_discount=Decimal("0"),
        penalty=amount * PENALTY_RATE,
        subtotal_before_penalty=amount,
        total_due=amount + amount * PENALTY_RATE,
    )


def test_no_pool_keeps_charge():
    result = absorb_overpayment(breakdown("200"), Decimal("0"), PENALTY_RATE)

    assert result.applied == Decimal("0")
    assert result.amount_before_penalty == Decimal("200")
    assert result.penalty == Decimal("20.0")
    assert result.total_due == Decimal("220.0")


def test_pool_covers_whole_bill():
    result = absorb_overpayment(breakdown("200"), Decimal("300"), PENALTY_RATE)

    assert result.applied == Decimal("200")
    assert result.amount_before_penalty == Decimal("0")
    assert result.penalty == Decimal("0")
    assert result.remaining_pool == Decimal("100")
    assert result.total_due == Decimal("0")


def test_pool_covers_exactly():
    result = absorb_overpayment(breakdown("200"), Decimal("200"), PENALTY_RATE)

    assert result.total_due == Decimal("0")
    assert result.remaining_pool == Decimal("0")


def test_partial_pool_recomputes_penalty():
    result = absorb_overpayment(breakdown("200"), Decimal("50"), PENALTY_RATE)

    assert result.applied == Decimal("50")
    assert result.amount_before_penalty == Decimal("150")
    assert result.penalty == Decimal("15.0")
    assert result.remaining_pool == Decimal("0")


def test_zero_bill_leaves_pool_untouched():
    result = absorb_overpayment(breakdown("0"), Decimal("80"), PENALTY_RATE)

    assert result.applied == Decimal("0")
    assert result.remaining_pool == Decimal("80")
