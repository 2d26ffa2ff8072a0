"""Pytest configuration and shared fixtures for all tests."""

import os

# Settings are read at import time
os.environ.setdefault("PETPRINT_ENV", "test")
os.environ.setdefault("PETPRINT_DATABASE_URL", "sqlite://")
os.environ.setdefault("PETPRINT_JWT_SECRET_KEY", "test-secret-key-for-the-referral-service-0001")
os.environ.setdefault("PETPRINT_STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("PETPRINT_LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from petprint.ledger.service import LedgerCalculator
from petprint.orders.service import OrderService
from petprint.referral.codes import CodeIssuer
from petprint.referral.service import ReferralResolver
from petprint.storage.db import Database
from petprint.storage.models import Customer, Influencer, Partner

FROZEN_NOW = datetime(2026, 3, 1, 12, 0, 0)


class FrozenClock:
    """Deterministic clock; tests move it forward explicitly."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def database():
    """In-memory SQLite database shared by every session of one test."""
    db = Database("sqlite://", timeout_seconds=1.0, poolclass=StaticPool)
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def resolver(database, clock):
    return ReferralResolver(database, clock=clock)


@pytest.fixture
def ledger(database):
    return LedgerCalculator(database)


@pytest.fixture
def orders(database, clock):
    return OrderService(database, clock=clock)


@pytest.fixture
def issuer(database, clock):
    return CodeIssuer(database, clock=clock)


def persist(database: Database, *objects):
    """Insert rows and return them with ids populated."""
    with database.session() as session:
        session.add_all(objects)
        session.flush()
    return objects[0] if len(objects) == 1 else objects


@pytest.fixture
def make_partner(database):
    counter = {"n": 0}

    def _make(**overrides) -> Partner:
        counter["n"] += 1
        fields = {
            "email": f"partner{counter['n']}@example.com",
            "business_name": f"Paws & Co {counter['n']}",
            "commission_rate": Decimal("20.00"),
            "lifetime_commission_rate": Decimal("5.00"),
            "customer_discount_rate": Decimal("10.00"),
        }
        fields.update(overrides)
        return persist(database, Partner(**fields))

    return _make


@pytest.fixture
def make_influencer(database):
    counter = {"n": 0}

    def _make(**overrides) -> Influencer:
        counter["n"] += 1
        fields = {
            "email": f"influencer{counter['n']}@example.com",
            "username": f"dogsofinsta{counter['n']}",
            "is_verified": True,
            "commission_rate": Decimal("15.00"),
            "lifetime_commission_rate": Decimal("5.00"),
        }
        fields.update(overrides)
        return persist(database, Influencer(**fields))

    return _make


@pytest.fixture
def make_customer(database):
    counter = {"n": 0}

    def _make(**overrides) -> Customer:
        counter["n"] += 1
        fields = {
            "email": f"customer{counter['n']}@example.com",
            "first_name": "Customer",
            "last_name": str(counter["n"]),
            "is_registered": True,
        }
        fields.update(overrides)
        return persist(database, Customer(**fields))

    return _make


def load(database: Database, model, record_id: int):
    """Fresh copy of a row, bypassing any stale instance."""
    with database.session() as session:
        return session.get(model, record_id)
