"""CLI entry point for billing batch jobs.

Usage:
    python -m src.cli.billing bills readings.json
    python -m src.cli.billing payments payments.json
    python -m src.cli.billing audit ACCOUNT_ID [ACCOUNT_ID ...] [--repair]

Input files hold a JSON list of meter readings or payments.

Exit Codes:
    0 - Success: every item processed (skipped readings included)
    1 - Failure: at least one item failed or the job could not run

Logging:
    INFO level logs to both stdout and logs/billing.log
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path

from telegram.ext import Application

from src.schemas.billing import MeterReading
from src.schemas.ledger import Payment
from src.services.batch_runner import BatchRunner
from src.services.bill_engine import BillEngine
from src.services.config import BillingSettings, get_settings
from src.services.db import create_session_factory, create_store_engine, init_models
from src.services.errors import BillingError
from src.services.events import EventSink, NullEventSink
from src.services.ledger_service import LedgerService
from src.services.logging import batch_context, setup_billing_logging
from src.services.notification_service import NotificationService
from src.services.payment_engine import PaymentEngine
from src.services.sql_store import SqlDocumentStore

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Water billing batch jobs")
    commands = parser.add_subparsers(dest="command", required=True)

    bills = commands.add_parser("bills", help="Issue bills for a file of meter readings")
    bills.add_argument("path", type=Path)

    payments = commands.add_parser("payments", help="Apply a file of payments")
    payments.add_argument("path", type=Path)

    audit = commands.add_parser("audit", help="Check ledgers for drift and conservation")
    audit.add_argument("account_ids", nargs="+")
    audit.add_argument("--repair", action="store_true", help="Rewrite drifted ledgers")

    return parser.parse_args(argv)


def load_items(path: Path, model):
    with path.open(encoding="utf-8") as f:
        return [model.model_validate(item) for item in json.load(f)]


async def run_bills(path: Path, store: SqlDocumentStore, events: EventSink, settings) -> int:
    readings = load_items(path, MeterReading)
    engine = BillEngine(store, events=events, settings=settings)
    result = await BatchRunner(engine).run_batch(readings)
    for error in result.errors:
        logger.info(
            "%s %s (%s): %s",
            "skipped" if error.skipped else "FAILED",
            error.account_id,
            error.billing_period,
            error.error,
        )
    return 0 if result.failed == 0 else 1


async def run_payments(path: Path, store: SqlDocumentStore, events: EventSink, settings) -> int:
    payments = load_items(path, Payment)
    engine = PaymentEngine(store, events=events, settings=settings)
    failed = 0
    for payment in payments:
        try:
            await engine.process(payment)
        except BillingError as e:
            failed += 1
            logger.error("Payment %s failed: %s", payment.reference_number, e.message)
    logger.info("Processed %d payments, %d failed", len(payments), failed)
    return 0 if failed == 0 else 1


async def run_audit(account_ids: list[str], repair: bool, store: SqlDocumentStore) -> int:
    ledger_service = LedgerService(store)
    clean = True
    for account_id in account_ids:
        drift = await ledger_service.detect_drift(account_id)
        violations = await ledger_service.check_conservation(account_id)
        for item in drift:
            logger.warning(
                "%s: %s cached %s, recomputed %s",
                account_id,
                item.field,
                item.cached,
                item.recomputed,
            )
        if drift and repair:
            await ledger_service.repair(account_id)
            drift = []
        clean = clean and not drift and not violations
    return 0 if clean else 1


async def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for billing CLI.

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    args = parse_args(argv)
    settings: BillingSettings = get_settings()
    setup_billing_logging(settings.log_file, settings.log_level)

    db_engine = create_store_engine(settings.database_url)
    try:
        await init_models(db_engine)
        store = SqlDocumentStore(
            create_session_factory(db_engine), max_operations=settings.bulk_write_limit
        )

        async with AsyncExitStack() as stack:
            events: EventSink = NullEventSink()
            if settings.telegram_bot_token:
                app = Application.builder().token(settings.telegram_bot_token).build()
                await stack.enter_async_context(app)
                events = NotificationService(app, store)

            with batch_context() as batch_id:
                logger.info("Running %s job %s", args.command, batch_id)
                if args.command == "bills":
                    return await run_bills(args.path, store, events, settings)
                if args.command == "payments":
                    return await run_payments(args.path, store, events, settings)
                return await run_audit(args.account_ids, args.repair, store)

    except KeyboardInterrupt:
        logger.warning("Billing job interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Billing job failed: {e}", exc_info=True)
        return 1
    finally:
        await db_engine.dispose()


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
