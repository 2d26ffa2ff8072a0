"""Account and order models shared by the referral and ledger modules."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# Percentages are stored as NUMERIC(5, 2), e.g. 12.50 for 12.5%
Rate = Numeric(5, 2, asdecimal=True)


class ReferrerType(str, Enum):
    """Party credited with a referral."""
    PARTNER = "partner"
    CUSTOMER = "customer"
    INFLUENCER = "influencer"


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Partner(Base):
    """Business partner (groomer, vet, pet shop) referring customers."""
    __tablename__ = "partners"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    business_name = Column(String(255), nullable=True)
    logo_url = Column(String(500), nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # Personal vanity code shared with customers
    personal_referral_code = Column(String(32), unique=True, nullable=True, index=True)
    referral_scan_count = Column(Integer, default=0, nullable=False)
    referral_conversions = Column(Integer, default=0, nullable=False)

    # Rates (percent)
    commission_rate = Column(Rate, nullable=True)  # First order of a referred customer
    lifetime_commission_rate = Column(Rate, nullable=True)  # Subsequent orders
    customer_discount_rate = Column(Rate, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        if self.business_name:
            return self.business_name
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.email

    def __repr__(self):
        return f"<Partner(id={self.id}, business={self.business_name})>"


class Influencer(Base):
    """Social media influencer with one or more referral codes."""
    __tablename__ = "influencers"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)

    commission_rate = Column(Rate, nullable=True)
    lifetime_commission_rate = Column(Rate, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        return f"@{self.username}{' ✓' if self.is_verified else ''}"

    def __repr__(self):
        return f"<Influencer(id={self.id}, username={self.username})>"


class Customer(Base):
    """Shop customer.

    The ``referral_*`` columns hold the customer's attribution. They are
    written once, by a conditional update, and never overwritten.
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)  # Stored lower-case
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    is_registered = Column(Boolean, default=False, nullable=False)

    # Personal vanity code for customer-to-customer referrals
    personal_referral_code = Column(String(32), unique=True, nullable=True, index=True)
    referral_scan_count = Column(Integer, default=0, nullable=False)
    referral_conversions = Column(Integer, default=0, nullable=False)

    # Store credit in pence
    current_credit_balance = Column(Integer, default=0, nullable=False)

    # Attribution
    referral_type = Column(String(20), nullable=True, index=True)  # ReferrerType value
    referrer_id = Column(Integer, nullable=True, index=True)
    referral_source = Column(String(40), nullable=True)  # CodeKind value
    referral_code_used = Column(String(32), nullable=True)
    referral_discount_rate = Column(Rate, nullable=True)
    referral_discount_applied = Column(Integer, default=0, nullable=False)  # pence
    referral_commission_rate = Column(Rate, nullable=True)  # Snapshot, initial tier
    referral_trailing_rate = Column(Rate, nullable=True)  # Snapshot, trailing tier
    referral_applied_at = Column(DateTime, nullable=True)
    referral_order_id = Column(Integer, nullable=True)  # First order that took the discount

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    orders = relationship("Order", back_populates="customer")

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.email

    @property
    def is_attributed(self) -> bool:
        return self.referral_type is not None

    def __repr__(self):
        return f"<Customer(id={self.id}, email={self.email}, referral={self.referral_type})>"


class Order(Base):
    """Shop order. All amounts are in pence."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    customer_email = Column(String(255), nullable=False, index=True)

    subtotal_amount = Column(Integer, nullable=False)  # Before discount and credit
    discount_amount = Column(Integer, default=0, nullable=False)
    credit_applied = Column(Integer, default=0, nullable=False)
    shipping_amount = Column(Integer, default=0, nullable=False)
    total_amount = Column(Integer, nullable=False)

    referral_code = Column(String(32), nullable=True)
    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    payment_reference = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True, index=True)

    customer = relationship("Customer", back_populates="orders")

    def __repr__(self):
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status})>"
