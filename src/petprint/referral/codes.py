"""Referral code issuance: personal codes, pre-registration batches and invitations."""

import secrets
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select, update

from petprint.errors import Conflict, CustomerNotFound, Expired, InvalidInput, NotFound, RecipientNotFound
from petprint.logging_config import get_logger
from petprint.money import as_rate, to_major
from petprint.referral.models import (
    CodeStatus,
    CustomerReferral,
    InfluencerReferralCode,
    InvitationStatus,
    PartnerReferral,
    PreRegistrationCode,
)
from petprint.referral.service import normalize_code
from petprint.settings import settings
from petprint.storage.db import Database
from petprint.storage.models import Customer, Order, OrderStatus, Partner, ReferrerType

logger = get_logger(__name__)

# Exclude confusing characters: 0, O, I, L, 1
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
MAX_GENERATION_ATTEMPTS = 10

_CODE_COLUMNS = (
    PreRegistrationCode.code,
    PartnerReferral.referral_code,
    CustomerReferral.referral_code,
    InfluencerReferralCode.code,
    Partner.personal_referral_code,
    Customer.personal_referral_code,
)


def generate_code(length: int | None = None, prefix: str = "") -> str:
    """Generate a readable random code, e.g. ``PRE7KX2M9Q``."""
    length = length or settings.referral_code_length
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def code_in_use(session, code: str) -> bool:
    """True if any referral table already holds ``code``."""
    for column in _CODE_COLUMNS:
        if session.execute(select(column).where(column == code).limit(1)).first() is not None:
            return True
    return False


def _unique_code(session, prefix: str = "") -> str:
    for _ in range(MAX_GENERATION_ATTEMPTS):
        code = generate_code(prefix=prefix)
        if not code_in_use(session, code):
            return code
    raise Conflict("Could not generate a unique referral code")


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    local, sep, domain = value.partition("@")
    if not (local and sep and "." in domain) or " " in value:
        raise InvalidInput("A valid email address is required")
    return value


def _optional_rate(value, field: str):
    if value is None:
        return None
    rate = as_rate(value)
    if rate < 0 or rate > 100:
        raise InvalidInput(f"{field} must be between 0 and 100")
    return rate


def _invitation_dict(invite) -> dict:
    return {
        "code": invite.referral_code,
        "referred_email": invite.referred_email,
        "status": invite.status,
        "scan_count": invite.scan_count,
        "conversions": invite.conversions,
        "expires_at": invite.expires_at,
        "created_at": invite.created_at,
    }


class CodeIssuer:
    """Creates referral codes for partners, customers and admin batches."""

    def __init__(self, database: Database, clock=datetime.utcnow):
        self.database = database
        self.clock = clock
        self.logger = get_logger(__name__)

    def assign_personal_code(self, account_type: str, account_id: int) -> str:
        """Give a partner or customer a personal code, keeping an existing one.

        Args:
            account_type: "partner" or "customer"
            account_id: Account ID

        Returns:
            The account's personal code
        """
        models = {"partner": Partner, "customer": Customer}
        model = models.get(account_type)
        if model is None:
            raise InvalidInput(f"Unsupported account type: {account_type}")

        with self.database.session() as session:
            account = session.get(model, account_id)
            if account is None:
                raise NotFound(f"{account_type.capitalize()} {account_id} not found")
            if account.personal_referral_code:
                return account.personal_referral_code

            code = _unique_code(session)
            result = session.execute(
                update(model)
                .where(model.id == account_id, model.personal_referral_code.is_(None))
                .values(personal_referral_code=code)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Another request assigned one first
                session.rollback()
                return session.get(model, account_id, populate_existing=True).personal_referral_code

        self.logger.info("personal_code_assigned", account_type=account_type, account_id=account_id, code=code)
        return code

    def issue_pre_registration_batch(
        self,
        count: int,
        expires_in_days: int | None = None,
        batch_label: str | None = None,
    ) -> list[str]:
        """Issue ``count`` active pre-registration codes."""
        if count <= 0 or count > 1000:
            raise InvalidInput("count must be between 1 and 1000")
        days = settings.pre_registration_expiry_days if expires_in_days is None else expires_in_days
        if days <= 0:
            raise InvalidInput("expires_in_days must be positive")

        expiration = self.clock() + timedelta(days=days)
        codes = []
        with self.database.session() as session:
            for _ in range(count):
                code = _unique_code(session, prefix="PRE")
                session.add(
                    PreRegistrationCode(
                        code=code,
                        status=CodeStatus.ACTIVE.value,
                        expiration_date=expiration,
                        batch_label=batch_label,
                    )
                )
                session.flush()
                codes.append(code)

        self.logger.info("pre_registration_batch_issued", count=count, batch_label=batch_label)
        return codes

    def claim_pre_registration_code(self, code: str, partner_id: int) -> PreRegistrationCode:
        """Bind an active invite code to the partner who signed up with it."""
        normalized = normalize_code(code)
        now = self.clock()
        with self.database.session() as session:
            if session.get(Partner, partner_id) is None:
                raise NotFound(f"Partner {partner_id} not found")

            result = session.execute(
                update(PreRegistrationCode)
                .where(
                    PreRegistrationCode.code == normalized,
                    PreRegistrationCode.status == CodeStatus.ACTIVE.value,
                    or_(
                        PreRegistrationCode.expiration_date.is_(None),
                        PreRegistrationCode.expiration_date > now,
                    ),
                )
                .values(status=CodeStatus.USED.value, partner_id=partner_id, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFound("Pre-registration code not found or already claimed")

            invite = session.execute(
                select(PreRegistrationCode).where(PreRegistrationCode.code == normalized)
            ).scalar_one()

        self.logger.info("pre_registration_code_claimed", code=normalized, partner_id=partner_id)
        return invite

    # ==================== INVITATIONS ====================

    def _invite_expiry(self, expires_in_days: int | None) -> datetime:
        days = settings.referral_invite_expiry_days if expires_in_days is None else expires_in_days
        if days <= 0:
            raise InvalidInput("expires_in_days must be positive")
        return self.clock() + timedelta(days=days)

    def _open_invitation(self, session, model, email: str, now: datetime, *statuses: str):
        return session.execute(
            select(model.id)
            .where(
                func.lower(model.referred_email) == email,
                model.status.in_(statuses),
                or_(model.expires_at.is_(None), model.expires_at > now),
            )
            .limit(1)
        ).first()

    def create_partner_referral(
        self,
        partner_id: int,
        referred_email: str,
        commission_rate=None,
        expires_in_days: int | None = None,
    ) -> PartnerReferral:
        """Invite a prospective customer on behalf of a partner.

        The invitation starts ``pending`` and only brings the customer to
        the partner once accepted.

        Args:
            partner_id: Inviting partner
            referred_email: Email the invitation is addressed to
            commission_rate: Optional percentage overriding the partner's rate
            expires_in_days: Defaults to ``referral_invite_expiry_days``

        Raises:
            RecipientNotFound: Unknown or inactive partner
            Conflict: The email already belongs to a customer or has an open invitation
        """
        email = normalize_email(referred_email)
        rate = _optional_rate(commission_rate, "commission_rate")
        expires_at = self._invite_expiry(expires_in_days)
        now = self.clock()

        with self.database.session() as session:
            partner = session.get(Partner, partner_id)
            if partner is None or not partner.is_active:
                raise RecipientNotFound(ReferrerType.PARTNER.value, partner_id)
            if session.execute(select(Customer.id).where(func.lower(Customer.email) == email)).first():
                raise Conflict("A customer with this email already exists")
            open_statuses = (InvitationStatus.PENDING.value, InvitationStatus.ACCEPTED.value)
            if self._open_invitation(session, PartnerReferral, email, now, *open_statuses):
                raise Conflict("This email already has an open referral")

            referral = PartnerReferral(
                partner_id=partner_id,
                referral_code=_unique_code(session),
                referred_email=email,
                status=InvitationStatus.PENDING.value,
                commission_rate=rate,
                expires_at=expires_at,
                created_at=now,
            )
            session.add(referral)
            session.flush()

        self.logger.info("partner_referral_created", partner_id=partner_id, code=referral.referral_code, referred_email=email)
        return referral

    def create_customer_referral(
        self,
        referrer_customer_id: int,
        referred_email: str,
        discount_rate=None,
        expires_in_days: int | None = None,
    ) -> CustomerReferral:
        """Invite a friend on behalf of a customer; starts ``pending``."""
        email = normalize_email(referred_email)
        rate = _optional_rate(discount_rate, "discount_rate")
        expires_at = self._invite_expiry(expires_in_days)
        now = self.clock()

        with self.database.session() as session:
            referrer = session.get(Customer, referrer_customer_id)
            if referrer is None:
                raise CustomerNotFound(referrer_customer_id)
            if referrer.email.lower() == email:
                raise InvalidInput("Customers cannot invite themselves")
            if session.execute(select(Customer.id).where(func.lower(Customer.email) == email)).first():
                raise Conflict("A customer with this email already exists")
            if self._open_invitation(session, CustomerReferral, email, now, InvitationStatus.PENDING.value):
                raise Conflict("This email already has an open referral")

            referral = CustomerReferral(
                referrer_customer_id=referrer_customer_id,
                referral_code=_unique_code(session),
                referred_email=email,
                status=InvitationStatus.PENDING.value,
                discount_rate=rate,
                expires_at=expires_at,
                created_at=now,
            )
            session.add(referral)
            session.flush()

        self.logger.info(
            "customer_referral_created",
            referrer_customer_id=referrer_customer_id,
            code=referral.referral_code,
            referred_email=email,
        )
        return referral

    def _settle_invitation(self, code: str, customer_id: int, accept: bool):
        normalized = normalize_code(code)
        now = self.clock()
        targets = (
            (PartnerReferral, InvitationStatus.ACCEPTED),
            (CustomerReferral, InvitationStatus.SIGNED_UP),
        )

        with self.database.session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise CustomerNotFound(customer_id)

            for model, accepted in targets:
                invite = session.execute(
                    select(model).where(model.referral_code == normalized)
                ).scalar_one_or_none()
                if invite is not None:
                    break
            else:
                raise NotFound("Invitation not found")

            if invite.referred_email and invite.referred_email.lower() != customer.email.lower():
                raise InvalidInput("This invitation was sent to a different email address")
            if invite.expires_at is not None and invite.expires_at <= now:
                raise Expired(normalized)

            target = accepted if accept else InvitationStatus.DECLINED
            result = session.execute(
                update(model)
                .where(model.id == invite.id, model.status == InvitationStatus.PENDING.value)
                .values(status=target.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise Conflict(f"Invitation is already {invite.status}")
            session.refresh(invite)

        self.logger.info(
            "invitation_settled",
            code=normalized,
            customer_id=customer_id,
            status=invite.status,
        )
        return invite

    def accept_invitation(self, code: str, customer_id: int):
        """Accept a pending invitation addressed to the customer.

        Partner invitations become ``accepted`` and customer invitations
        ``signed_up``; from then on the code resolves for attribution.

        Raises:
            NotFound: No invitation carries this code
            InvalidInput: The invitation was addressed to another email
            Expired: Past ``expires_at``
            Conflict: Already accepted or declined
        """
        return self._settle_invitation(code, customer_id, accept=True)

    def decline_invitation(self, code: str, customer_id: int):
        """Decline a pending invitation; the code never resolves afterwards."""
        return self._settle_invitation(code, customer_id, accept=False)

    # ==================== REPORTS ====================

    def partner_referral_report(self, partner_id: int) -> dict:
        """Invitations, referred customers and funnel stats for a partner."""
        with self.database.session() as session:
            partner = session.get(Partner, partner_id)
            if partner is None:
                raise RecipientNotFound(ReferrerType.PARTNER.value, partner_id)

            invitations = session.execute(
                select(PartnerReferral)
                .where(PartnerReferral.partner_id == partner_id)
                .order_by(PartnerReferral.created_at.desc(), PartnerReferral.id.desc())
            ).scalars().all()
            invite_code_scans = session.execute(
                select(func.coalesce(func.sum(PreRegistrationCode.scan_count), 0)).where(
                    PreRegistrationCode.partner_id == partner_id
                )
            ).scalar_one()
            customers = session.execute(
                select(Customer)
                .where(
                    Customer.referral_type == ReferrerType.PARTNER.value,
                    Customer.referrer_id == partner_id,
                )
                .order_by(Customer.referral_applied_at.desc(), Customer.id.desc())
            ).scalars().all()

            order_totals = {}
            if customers:
                rows = session.execute(
                    select(Order.customer_id, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
                    .where(
                        Order.customer_id.in_([c.id for c in customers]),
                        Order.status == OrderStatus.COMPLETED.value,
                    )
                    .group_by(Order.customer_id)
                ).all()
                order_totals = {customer_id: (count, value) for customer_id, count, value in rows}

            total_scans = partner.referral_scan_count + invite_code_scans + sum(i.scan_count for i in invitations)

        referred = []
        for customer in customers:
            count, value = order_totals.get(customer.id, (0, 0))
            referred.append(
                {
                    "id": customer.id,
                    "email": customer.email,
                    "first_name": customer.first_name,
                    "last_name": customer.last_name,
                    "referral_code": customer.referral_code_used,
                    "referral_source": customer.referral_source,
                    "referral_applied_at": customer.referral_applied_at,
                    "order_count": count,
                    "total_order_value_pounds": to_major(value),
                }
            )

        orders_count = sum(count for count, _ in order_totals.values())
        orders_value = sum(value for _, value in order_totals.values())
        signups = len(customers)
        return {
            "summary": {
                "total_scans": total_scans,
                "total_signups": signups,
                "orders_count": orders_count,
                "orders_value_pounds": to_major(orders_value),
                "conversion_rate": round(signups * 100 / total_scans, 2) if total_scans else 0.0,
            },
            "invitations": [_invitation_dict(i) for i in invitations],
            "referred_customers": referred,
        }
