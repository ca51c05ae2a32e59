"""Pytest configuration: a document store over a temporary SQLite database."""

import pytest

from src.services.account_locks import AccountLocks
from src.services.bill_engine import BillEngine
from src.services.charge_calculator import ChargeCalculator
from src.services.config import BillingSettings
from src.services.db import create_session_factory, create_store_engine, init_models
from src.services.events import CollectingEventSink
from src.services.ledger_service import LedgerService
from src.services.payment_engine import PaymentEngine
from src.services.sql_store import SqlDocumentStore


@pytest.fixture
def settings():
    """Defaults, independent of any .env in the working directory."""
    return BillingSettings(_env_file=None)


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_store_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def store(session_factory, settings):
    return SqlDocumentStore(session_factory, max_operations=settings.bulk_write_limit)


@pytest.fixture
def events():
    return CollectingEventSink()


@pytest.fixture
def locks():
    return AccountLocks()


@pytest.fixture
def ledger_service(store):
    return LedgerService(store)


@pytest.fixture
def bill_engine(store, ledger_service, locks, events, settings):
    return BillEngine(
        store,
        calculator=ChargeCalculator.from_settings(settings),
        ledger_service=ledger_service,
        locks=locks,
        events=events,
        settings=settings,
    )


@pytest.fixture
def payment_engine(store, ledger_service, locks, events, settings):
    return PaymentEngine(
        store, ledger_service=ledger_service, locks=locks, events=events, settings=settings
    )
