"""Custom exception classes for billing and ledger operations.

Provides domain-specific exceptions so batch jobs can count and report
per-account failures without aborting the whole run.
"""


class BillingError(Exception):
    """Base exception for billing and ledger errors."""

    def __init__(self, message: str, account_id: str | None = None):
        self.message = message
        self.account_id = account_id
        super().__init__(message)


class InvalidReading(BillingError):
    """Meter reading is missing a value or yields negative consumption."""

    pass


class DuplicateBillingPeriod(BillingError):
    """A bill already exists for this account and billing period."""

    pass


class UnknownAccount(BillingError):
    """No account matches the given account identifier."""

    pass


class PaymentNotVerified(BillingError):
    """Payment has not been verified and cannot be applied to the ledger."""

    pass


class LedgerWriteFailed(BillingError):
    """Ledger unit could not be persisted; retry the whole unit."""

    pass


class StoreUnavailable(BillingError):
    """Document store operation failed (connection, lock timeout, etc.)."""

    pass


__all__ = [
    "BillingError",
    "InvalidReading",
    "DuplicateBillingPeriod",
    "UnknownAccount",
    "PaymentNotVerified",
    "LedgerWriteFailed",
    "StoreUnavailable",
]
