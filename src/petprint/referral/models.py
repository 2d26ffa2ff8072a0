"""Referral code tables, one per referral mechanism."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from petprint.storage.models import Base, Rate


class CodeKind(str, Enum):
    """Referral mechanism a code belongs to, in resolution priority order."""
    PRE_REGISTRATION = "pre_registration"
    PARTNER_REFERRAL = "partner_referral"
    CUSTOMER_REFERRAL = "customer_referral"
    INFLUENCER = "influencer_referral"
    PARTNER_PERSONAL = "partner_personal_code"
    CUSTOMER_PERSONAL = "customer_personal_code"


class CodeStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class InvitationStatus(str, Enum):
    """Lifecycle of a partner or customer invitation."""
    PENDING = "pending"
    ACCEPTED = "accepted"  # Partner invitations
    SIGNED_UP = "signed_up"  # Customer invitations
    DECLINED = "declined"


class PreRegistrationCode(Base):
    """Invite code handed to a prospective partner.

    Issued by an admin in batches with status ``active``. When a partner
    signs up with it the code becomes ``used`` and from then on brings
    customers to that partner.
    """
    __tablename__ = "pre_registration_codes"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=True, index=True)
    status = Column(String(20), default=CodeStatus.ACTIVE.value, nullable=False)
    expiration_date = Column(DateTime, nullable=True)
    batch_label = Column(String(100), nullable=True)

    scan_count = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    claimed_at = Column(DateTime, nullable=True)

    partner = relationship("Partner")

    def __repr__(self):
        return f"<PreRegistrationCode(code={self.code}, status={self.status})>"


class PartnerReferral(Base):
    """Invitation sent by a partner to a specific customer."""
    __tablename__ = "partner_referrals"

    id = Column(Integer, primary_key=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)
    referral_code = Column(String(32), unique=True, nullable=False, index=True)
    referred_email = Column(String(255), nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, accepted, declined
    commission_rate = Column(Rate, nullable=True)  # Overrides the partner's rate
    expires_at = Column(DateTime, nullable=True)

    scan_count = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    partner = relationship("Partner")

    def __repr__(self):
        return f"<PartnerReferral(code={self.referral_code}, status={self.status})>"


class CustomerReferral(Base):
    """Invitation sent by a customer to a friend."""
    __tablename__ = "customer_referrals"

    id = Column(Integer, primary_key=True)
    referrer_customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    referral_code = Column(String(32), unique=True, nullable=False, index=True)
    referred_email = Column(String(255), nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, signed_up, declined
    discount_rate = Column(Rate, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    scan_count = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    referrer = relationship("Customer")

    def __repr__(self):
        return f"<CustomerReferral(code={self.referral_code}, status={self.status})>"


class InfluencerReferralCode(Base):
    """Public code promoted by an influencer."""
    __tablename__ = "influencer_referral_codes"

    id = Column(Integer, primary_key=True)
    influencer_id = Column(Integer, ForeignKey("influencers.id"), nullable=False, index=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    discount_rate = Column(Rate, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    scan_count = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    influencer = relationship("Influencer")

    def __repr__(self):
        return f"<InfluencerReferralCode(code={self.code}, active={self.is_active})>"
