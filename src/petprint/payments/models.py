"""Webhook idempotency store."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from petprint.storage.models import Base


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook events for idempotency.

    Stored in the database to survive restarts and to work across processes.
    """
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)  # e.g., "payment_intent.succeeded"
    source = Column(String(50), nullable=False)  # e.g., "stripe"
    order_id = Column(Integer, nullable=True)
    processed_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"
