"""Collection paths of the billing documents."""

ACCOUNTS = "accounts"
LEDGERS = "ledgers"


def bills(account_id: str) -> str:
    return f"bills/{account_id}/records"


def payments(account_id: str) -> str:
    return f"payments/{account_id}/records"


def payment_applications(account_id: str) -> str:
    return f"payment_applications/{account_id}/records"


def bill_adjustments(account_id: str) -> str:
    return f"bill_adjustments/{account_id}/records"


__all__ = [
    "ACCOUNTS",
    "LEDGERS",
    "bill_adjustments",
    "bills",
    "payment_applications",
    "payments",
]
