"""Ledger models: commissions, customer credits and manual adjustments."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from petprint.storage.models import Base, Rate


class LedgerStatus(str, Enum):
    """Entries only move forward: pending -> approved -> paid."""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"


class LedgerKind(str, Enum):
    PARTNER_COMMISSION = "partner_commission"
    INFLUENCER_COMMISSION = "influencer_commission"
    CUSTOMER_CREDIT = "customer_credit"


class CommissionTier(str, Enum):
    INITIAL = "initial"  # First completed order of the referred customer
    TRAILING = "trailing"  # Every later order


STATUS_ORDER = {
    LedgerStatus.PENDING.value: 0,
    LedgerStatus.APPROVED.value: 1,
    LedgerStatus.PAID.value: 2,
}


class LedgerEntry(Base):
    """Commission or credit owed for one completed order.

    At most one entry exists per order (``uq_commissions_order_id``).
    """
    __tablename__ = "commissions"
    __table_args__ = (UniqueConstraint("order_id", name="uq_commissions_order_id"),)

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    recipient_type = Column(String(20), nullable=False)  # ReferrerType value
    recipient_id = Column(Integer, nullable=False)
    kind = Column(String(30), nullable=False)  # LedgerKind value
    tier = Column(String(20), nullable=False)  # CommissionTier value

    # Amounts in pence
    order_amount = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    rate = Column(Rate, nullable=False)

    status = Column(String(20), default=LedgerStatus.PENDING.value, nullable=False, index=True)
    referral_code = Column(String(32), nullable=True)
    referred_customer_id = Column(Integer, nullable=True)
    referred_customer_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return (
            f"<LedgerEntry(order={self.order_id}, recipient={self.recipient_type}:{self.recipient_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class CreditAdjustment(Base):
    """Manual change to a customer's credit balance made by an admin."""
    __tablename__ = "credit_adjustments"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    amount = Column(Integer, nullable=False)  # Positive = credit, Negative = debit
    balance_after = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    actor_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CreditAdjustment(customer={self.customer_id}, amount={self.amount})>"
