"""Tests for Stripe webhook processing."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select, update

from conftest import persist
from petprint.errors import UpstreamUnavailable
from petprint.ledger.models import LedgerEntry
from petprint.payments.models import ProcessedWebhookEvent
from petprint.payments.stripe_service import (
    WebhookProcessor,
    extract_order_id,
    verify_webhook_signature,
)
from petprint.settings import settings
from petprint.storage.models import Order, Partner


def payment_event(event_id, order_id, event_type="payment_intent.succeeded"):
    metadata = {} if order_id is None else {"order_id": str(order_id)}
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": f"pi_{event_id}", "metadata": metadata}},
    }


@pytest.fixture
def processor(database, orders, ledger):
    return WebhookProcessor(database, orders=orders, ledger=ledger)


@pytest.fixture
def pending_order(make_partner, make_customer, resolver, orders):
    make_partner(personal_referral_code="PARTNER1", commission_rate=Decimal("20.00"))
    customer = make_customer()
    resolver.attribute(customer.id, "PARTNER1")
    return orders.place_order(customer.id, 10000)


class TestExtractOrderId:
    @pytest.mark.parametrize(
        "payment, expected",
        [
            ({"metadata": {"order_id": "42"}}, 42),
            ({"metadata": {"order_id": 7}}, 7),
            ({"metadata": {}}, None),
            ({"metadata": {"order_id": "abc"}}, None),
            ({}, None),
        ],
    )
    def test_extract(self, payment, expected):
        assert extract_order_id(payment) == expected


class TestVerifySignature:
    def test_unconfigured_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", "")

        with pytest.raises(ValueError, match="not configured"):
            verify_webhook_signature(b"{}", "t=1,v1=abc")

    def test_invalid_signature(self):
        with pytest.raises(ValueError):
            verify_webhook_signature(b"{}", "t=1,v1=abc")


class TestHandleEvent:
    def test_completes_and_records(self, processor, database, pending_order):
        result = processor.handle_event(payment_event("evt_1", pending_order.id))

        assert result == {"received": True, "order_id": pending_order.id, "ledger": "recorded"}
        assert processor.is_event_processed("evt_1")
        with database.session() as session:
            entry = session.execute(select(LedgerEntry)).scalar_one()
        assert entry.amount == 2000

    def test_duplicate_event(self, processor, database, pending_order):
        processor.handle_event(payment_event("evt_1", pending_order.id))

        result = processor.handle_event(payment_event("evt_1", pending_order.id))

        assert result == {"received": True, "duplicate": True}

    def test_redelivery_under_new_event_id(self, processor, database, pending_order):
        processor.handle_event(payment_event("evt_1", pending_order.id))

        result = processor.handle_event(
            payment_event("evt_2", pending_order.id, event_type="checkout.session.completed")
        )

        assert result["ledger"] == "duplicate"
        with database.session() as session:
            assert session.execute(select(func.count(LedgerEntry.id))).scalar_one() == 1

    def test_unhandled_type(self, processor):
        result = processor.handle_event(payment_event("evt_3", 1, event_type="invoice.paid"))

        assert result == {"received": True}
        assert not processor.is_event_processed("evt_3")

    def test_missing_order_id(self, processor):
        result = processor.handle_event(payment_event("evt_4", None))

        assert result == {"received": True}
        assert processor.is_event_processed("evt_4")

    def test_mark_twice(self, processor, database):
        processor.mark_event_processed("evt_5", "payment_intent.succeeded")
        processor.mark_event_processed("evt_5", "payment_intent.succeeded")

        with database.session() as session:
            assert session.execute(select(func.count(ProcessedWebhookEvent.id))).scalar_one() == 1


class TestCleanup:
    def test_removes_old_events(self, processor, database):
        persist(
            database,
            ProcessedWebhookEvent(
                event_id="evt_old",
                event_type="payment_intent.succeeded",
                source="stripe",
                processed_at=datetime.utcnow() - timedelta(days=45),
            ),
            ProcessedWebhookEvent(event_id="evt_new", event_type="payment_intent.succeeded", source="stripe"),
        )

        assert processor.cleanup_old_events(days=30) == 1
        assert processor.is_event_processed("evt_new")
        assert not processor.is_event_processed("evt_old")


def processed_count(database):
    with database.session() as session:
        return session.execute(select(func.count(ProcessedWebhookEvent.id))).scalar_one()


class TestUnrecoverableEvents:
    """Events that can never succeed are acknowledged once and not retried."""

    def test_referrer_deleted(self, processor, database, pending_order):
        with database.session() as session:
            session.execute(delete(Partner))

        first = processor.handle_event(payment_event("evt_gone", pending_order.id))
        redeliveries = [processor.handle_event(payment_event("evt_gone", pending_order.id)) for _ in range(2)]

        assert first == {"received": True, "order_id": pending_order.id, "ledger": "not_found"}
        assert all(r == {"received": True, "duplicate": True} for r in redeliveries)
        assert processed_count(database) == 1
        with database.session() as session:
            assert session.execute(select(func.count(LedgerEntry.id))).scalar_one() == 0

    def test_unknown_order(self, processor, database):
        result = processor.handle_event(payment_event("evt_ghost", 999))

        assert result == {"received": True, "order_id": 999, "ledger": "not_found"}
        assert processor.is_event_processed("evt_ghost")

    def test_cancelled_order(self, processor, database, pending_order):
        with database.session() as session:
            session.execute(
                update(Order).where(Order.id == pending_order.id).values(status="cancelled")
            )

        result = processor.handle_event(payment_event("evt_cancelled", pending_order.id))

        assert result["ledger"] == "invalid_order"
        assert processor.is_event_processed("evt_cancelled")

    def test_datastore_outage_propagates(self, processor, database, pending_order):
        database.drop_tables()

        with pytest.raises(UpstreamUnavailable):
            processor.handle_event(payment_event("evt_down", pending_order.id))
