"""Stripe webhook handling: payment success completes the order."""

from datetime import datetime, timedelta
from typing import Any

import stripe
from sqlalchemy import delete, select

from petprint.errors import Conflict, InvalidInput, NotFound
from petprint.ledger.service import LedgerCalculator
from petprint.logging_config import get_logger
from petprint.orders.service import OrderService
from petprint.payments.models import ProcessedWebhookEvent
from petprint.settings import settings
from petprint.storage.db import Database

logger = get_logger(__name__)

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key

STRIPE_SOURCE = "stripe"
PAYMENT_EVENTS = {"payment_intent.succeeded", "checkout.session.completed"}


def verify_webhook_signature(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and parse a Stripe webhook event.

    Args:
        payload: Raw request body
        sig_header: Stripe-Signature header value

    Returns:
        Verified Stripe event

    Raises:
        ValueError: If signature is invalid
    """
    if not settings.stripe_webhook_secret:
        raise ValueError("Stripe webhook secret not configured")

    try:
        return stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret,
        )
    except stripe.SignatureVerificationError:
        raise ValueError("Invalid webhook signature")


def extract_order_id(payment: Any) -> int | None:
    """Read ``metadata.order_id`` from a payment intent or checkout session."""
    try:
        raw = payment["metadata"]["order_id"]
    except (KeyError, TypeError):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _payment_reference(payment: Any) -> str | None:
    # Checkout sessions point at their payment intent; intents are their own reference
    if "payment_intent" in payment and payment["payment_intent"]:
        return payment["payment_intent"]
    return payment["id"] if "id" in payment else None


class WebhookProcessor:
    """Completes orders and records ledger entries for payment events."""

    def __init__(
        self,
        database: Database,
        orders: OrderService | None = None,
        ledger: LedgerCalculator | None = None,
    ):
        self.database = database
        self.orders = orders or OrderService(database)
        self.ledger = ledger or LedgerCalculator(database)
        self.logger = get_logger(__name__)

    def is_event_processed(self, event_id: str, source: str = STRIPE_SOURCE) -> bool:
        with self.database.session() as session:
            existing = session.execute(
                select(ProcessedWebhookEvent.id).where(
                    ProcessedWebhookEvent.event_id == event_id,
                    ProcessedWebhookEvent.source == source,
                )
            ).first()
            return existing is not None

    def mark_event_processed(
        self,
        event_id: str,
        event_type: str,
        order_id: int | None = None,
        source: str = STRIPE_SOURCE,
    ) -> None:
        try:
            with self.database.session() as session:
                session.add(
                    ProcessedWebhookEvent(
                        event_id=event_id,
                        event_type=event_type,
                        source=source,
                        order_id=order_id,
                        processed_at=datetime.utcnow(),
                    )
                )
        except Conflict:
            # Concurrent delivery already stored it
            self.logger.info("webhook_event_already_marked", event_id=event_id)

    def cleanup_old_events(self, days: int = 30) -> int:
        """Remove processed-event records older than ``days``."""
        cutoff = datetime.utcnow() - timedelta(days=days)
        with self.database.session() as session:
            result = session.execute(
                delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.processed_at < cutoff)
            )
            return result.rowcount

    def handle_event(self, event: Any) -> dict[str, Any]:
        """Process a verified Stripe event.

        Args:
            event: Verified event (``id``, ``type``, ``data.object``)

        Returns:
            Acknowledgement body for the webhook response
        """
        event_id = event["id"]
        event_type = event["type"]

        if event_type not in PAYMENT_EVENTS:
            self.logger.info("stripe_webhook_unhandled", event_type=event_type)
            return {"received": True}

        if self.is_event_processed(event_id):
            self.logger.info("stripe_webhook_duplicate", event_id=event_id)
            return {"received": True, "duplicate": True}

        payment = event["data"]["object"]
        order_id = extract_order_id(payment)
        if order_id is None:
            self.logger.warning("stripe_webhook_missing_order", event_id=event_id, event_type=event_type)
            self.mark_event_processed(event_id, event_type)
            return {"received": True}

        try:
            transitioned = self.orders.complete(order_id, payment_reference=_payment_reference(payment))
            outcome = self.ledger.record_completion(order_id)
        except (NotFound, InvalidInput) as e:
            # Redelivery cannot fix these; datastore outages still propagate so Stripe retries
            self.logger.error(
                "stripe_payment_rejected",
                event_id=event_id,
                order_id=order_id,
                kind=e.kind,
                error=e.message,
            )
            self.mark_event_processed(event_id, event_type, order_id=order_id)
            return {"received": True, "order_id": order_id, "ledger": e.kind}

        # Mark as processed AFTER successful handling
        self.mark_event_processed(event_id, event_type, order_id=order_id)
        self.logger.info(
            "stripe_payment_processed",
            event_id=event_id,
            order_id=order_id,
            order_transitioned=transitioned,
            ledger=outcome.status.value,
        )
        return {"received": True, "order_id": order_id, "ledger": outcome.status.value}
