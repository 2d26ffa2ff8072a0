"""Candidate sources tried in order when resolving a referral code.

Each source knows how to look a code up in one table and turn the row into
a ``ResolvedCode``. ``default_sources`` returns them in priority order:
invitational codes before organic ones, partner-sourced before
customer-sourced.

A source returns ``None`` only when its query finds no row. Datastore
failures propagate so the resolver never mistakes an outage for "no match".
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from petprint.money import as_rate
from petprint.referral.models import (
    CodeKind,
    CodeStatus,
    CustomerReferral,
    InfluencerReferralCode,
    InvitationStatus,
    PartnerReferral,
    PreRegistrationCode,
)
from petprint.storage.models import Customer, Influencer, Partner, ReferrerType


@dataclass(frozen=True)
class RateDefaults:
    """Fallback percentages used when a row carries no rate of its own."""
    initial_commission_rate: Decimal
    trailing_commission_rate: Decimal
    customer_credit_rate: Decimal
    discount_rate: Decimal

    @classmethod
    def from_settings(cls, settings) -> "RateDefaults":
        return cls(
            initial_commission_rate=as_rate(settings.initial_commission_rate),
            trailing_commission_rate=as_rate(settings.trailing_commission_rate),
            customer_credit_rate=as_rate(settings.customer_credit_rate),
            discount_rate=as_rate(settings.default_discount_rate),
        )


@dataclass(frozen=True)
class CodeRecord:
    """A matched code, normalized across all sources."""
    id: int
    code: str
    kind: CodeKind
    status: str
    expires_at: datetime | None
    commission_rate: Decimal
    trailing_rate: Decimal
    discount_rate: Decimal


@dataclass(frozen=True)
class Referrer:
    """The party a code credits."""
    id: int
    type: ReferrerType
    name: str
    avatar_url: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedCode:
    record: CodeRecord
    referrer: Referrer

    def is_expired(self, now: datetime) -> bool:
        # Inclusive boundary: a code expiring exactly now is already expired
        return self.record.expires_at is not None and self.record.expires_at <= now


def _rate(value, fallback: Decimal) -> Decimal:
    return as_rate(value) if value is not None else fallback


def _partner_referrer(partner: Partner) -> Referrer:
    return Referrer(
        id=partner.id,
        type=ReferrerType.PARTNER,
        name=partner.display_name,
        avatar_url=partner.logo_url or partner.avatar_url,
        details={"business_name": partner.business_name},
    )


def _customer_referrer(customer: Customer) -> Referrer:
    return Referrer(
        id=customer.id,
        type=ReferrerType.CUSTOMER,
        name=customer.display_name,
        details={"email": customer.email},
    )


class ReferralSource:
    """One candidate table in the resolution chain."""

    kind: CodeKind
    referrer_type: ReferrerType
    model: Any
    scan_column: str = "scan_count"
    conversion_column: str = "conversions"

    def __init__(self, rates: RateDefaults):
        self.rates = rates

    def try_resolve(self, session: Session, code: str) -> ResolvedCode | None:
        raise NotImplementedError

    def _increment(self, session: Session, record_id: int, column_name: str) -> None:
        column = getattr(self.model, column_name)
        session.execute(
            update(self.model)
            .where(self.model.id == record_id)
            .values({column_name: column + 1})
        )

    def record_scan(self, session: Session, record_id: int) -> None:
        """Atomically bump the scan counter of the matched row."""
        self._increment(session, record_id, self.scan_column)

    def record_conversion(self, session: Session, record_id: int) -> None:
        """Atomically bump the conversion counter of the matched row."""
        self._increment(session, record_id, self.conversion_column)

    def __repr__(self):
        return f"<{type(self).__name__}(kind={self.kind.value})>"


class PreRegistrationSource(ReferralSource):
    """Invite codes already claimed by a partner."""

    kind = CodeKind.PRE_REGISTRATION
    referrer_type = ReferrerType.PARTNER
    model = PreRegistrationCode

    def try_resolve(self, session, code):
        row = session.execute(
            select(PreRegistrationCode, Partner)
            .join(Partner, PreRegistrationCode.partner_id == Partner.id)
            .where(
                PreRegistrationCode.code == code,
                PreRegistrationCode.status == CodeStatus.USED.value,
                Partner.is_active.is_(True),
            )
        ).first()
        if row is None:
            return None

        invite, partner = row
        return ResolvedCode(
            record=CodeRecord(
                id=invite.id,
                code=invite.code,
                kind=self.kind,
                status=CodeStatus.ACTIVE.value,
                expires_at=invite.expiration_date,
                commission_rate=_rate(partner.commission_rate, self.rates.initial_commission_rate),
                trailing_rate=_rate(partner.lifetime_commission_rate, self.rates.trailing_commission_rate),
                discount_rate=_rate(partner.customer_discount_rate, self.rates.discount_rate),
            ),
            referrer=_partner_referrer(partner),
        )


class PartnerReferralSource(ReferralSource):
    """Accepted partner-to-customer invitations."""

    kind = CodeKind.PARTNER_REFERRAL
    referrer_type = ReferrerType.PARTNER
    model = PartnerReferral

    def try_resolve(self, session, code):
        row = session.execute(
            select(PartnerReferral, Partner)
            .join(Partner, PartnerReferral.partner_id == Partner.id)
            .where(
                PartnerReferral.referral_code == code,
                PartnerReferral.status == InvitationStatus.ACCEPTED.value,
                Partner.is_active.is_(True),
            )
        ).first()
        if row is None:
            return None

        referral, partner = row
        initial = referral.commission_rate
        if initial is None:
            initial = partner.commission_rate
        return ResolvedCode(
            record=CodeRecord(
                id=referral.id,
                code=referral.referral_code,
                kind=self.kind,
                status=CodeStatus.ACTIVE.value,
                expires_at=referral.expires_at,
                commission_rate=_rate(initial, self.rates.initial_commission_rate),
                trailing_rate=_rate(partner.lifetime_commission_rate, self.rates.trailing_commission_rate),
                discount_rate=_rate(partner.customer_discount_rate, self.rates.discount_rate),
            ),
            referrer=_partner_referrer(partner),
        )


class CustomerReferralSource(ReferralSource):
    """Customer-to-customer invitations the friend has accepted."""

    kind = CodeKind.CUSTOMER_REFERRAL
    referrer_type = ReferrerType.CUSTOMER
    model = CustomerReferral

    def try_resolve(self, session, code):
        row = session.execute(
            select(CustomerReferral, Customer)
            .join(Customer, CustomerReferral.referrer_customer_id == Customer.id)
            .where(
                CustomerReferral.referral_code == code,
                CustomerReferral.status == InvitationStatus.SIGNED_UP.value,
            )
        ).first()
        if row is None:
            return None

        referral, referrer = row
        return ResolvedCode(
            record=CodeRecord(
                id=referral.id,
                code=referral.referral_code,
                kind=self.kind,
                status=CodeStatus.ACTIVE.value,
                expires_at=referral.expires_at,
                commission_rate=self.rates.customer_credit_rate,
                trailing_rate=self.rates.trailing_commission_rate,
                discount_rate=_rate(referral.discount_rate, self.rates.discount_rate),
            ),
            referrer=_customer_referrer(referrer),
        )


class InfluencerSource(ReferralSource):
    """Active influencer codes."""

    kind = CodeKind.INFLUENCER
    referrer_type = ReferrerType.INFLUENCER
    model = InfluencerReferralCode

    def try_resolve(self, session, code):
        row = session.execute(
            select(InfluencerReferralCode, Influencer)
            .join(Influencer, InfluencerReferralCode.influencer_id == Influencer.id)
            .where(
                InfluencerReferralCode.code == code,
                InfluencerReferralCode.is_active.is_(True),
                Influencer.is_active.is_(True),
            )
        ).first()
        if row is None:
            return None

        influencer_code, influencer = row
        return ResolvedCode(
            record=CodeRecord(
                id=influencer_code.id,
                code=influencer_code.code,
                kind=self.kind,
                status=CodeStatus.ACTIVE.value,
                expires_at=influencer_code.expires_at,
                commission_rate=_rate(influencer.commission_rate, self.rates.initial_commission_rate),
                trailing_rate=_rate(influencer.lifetime_commission_rate, self.rates.trailing_commission_rate),
                discount_rate=_rate(influencer_code.discount_rate, self.rates.discount_rate),
            ),
            referrer=Referrer(
                id=influencer.id,
                type=ReferrerType.INFLUENCER,
                name=influencer.display_name,
                avatar_url=influencer.avatar_url,
                details={"username": influencer.username, "is_verified": influencer.is_verified},
            ),
        )


class PartnerPersonalSource(ReferralSource):
    """Vanity codes of active partners."""

    kind = CodeKind.PARTNER_PERSONAL
    referrer_type = ReferrerType.PARTNER
    model = Partner
    scan_column = "referral_scan_count"
    conversion_column = "referral_conversions"

    def try_resolve(self, session, code):
        partner = session.execute(
            select(Partner).where(
                Partner.personal_referral_code == code,
                Partner.is_active.is_(True),
            )
        ).scalars().first()
        if partner is None:
            return None

        return ResolvedCode(
            record=CodeRecord(
                id=partner.id,
                code=partner.personal_referral_code,
                kind=self.kind,
                status=CodeStatus.ACTIVE.value,
                expires_at=None,
                commission_rate=_rate(partner.commission_rate, self.rates.initial_commission_rate),
                trailing_rate=_rate(partner.lifetime_commission_rate, self.rates.trailing_commission_rate),
                discount_rate=_rate(partner.customer_discount_rate, self.rates.discount_rate),
            ),
            referrer=_partner_referrer(partner),
        )


class CustomerPersonalSource(ReferralSource):
    """Vanity codes of registered customers."""

    kind = CodeKind.CUSTOMER_PERSONAL
    referrer_type = ReferrerType.CUSTOMER
    model = Customer
    scan_column = "referral_scan_count"
    conversion_column = "referral_conversions"

    def try_resolve(self, session, code):
        customer = session.execute(
            select(Customer).where(
                Customer.personal_referral_code == code,
                Customer.is_registered.is_(True),
            )
        ).scalars().first()
        if customer is None:
            return None

        return ResolvedCode(
            record=CodeRecord(
                id=customer.id,
                code=customer.personal_referral_code,
                kind=self.kind,
                status=CodeStatus.ACTIVE.value,
                expires_at=None,
                commission_rate=self.rates.customer_credit_rate,
                trailing_rate=self.rates.trailing_commission_rate,
                discount_rate=self.rates.discount_rate,
            ),
            referrer=_customer_referrer(customer),
        )


def default_sources(rates: RateDefaults) -> list[ReferralSource]:
    """The resolution chain, highest priority first."""
    return [
        PreRegistrationSource(rates),
        PartnerReferralSource(rates),
        CustomerReferralSource(rates),
        InfluencerSource(rates),
        PartnerPersonalSource(rates),
        CustomerPersonalSource(rates),
    ]
