"""Commission and credit ledger.

Turns completed orders of referred customers into ledger entries and folds
those entries into per-recipient summaries.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from petprint.errors import (
    CustomerNotFound,
    InsufficientBalance,
    InvalidInput,
    InvalidOrder,
    NotFound,
    RecipientNotFound,
)
from petprint.ledger.models import (
    CommissionTier,
    CreditAdjustment,
    LedgerEntry,
    LedgerKind,
    LedgerStatus,
)
from petprint.logging_config import get_logger
from petprint.money import percent_of, to_major
from petprint.storage.db import Database
from petprint.storage.models import Customer, Influencer, Order, OrderStatus, Partner, ReferrerType

logger = get_logger(__name__)

RECIPIENT_MODELS = {
    ReferrerType.PARTNER: Partner,
    ReferrerType.INFLUENCER: Influencer,
    ReferrerType.CUSTOMER: Customer,
}

ENTRY_KINDS = {
    ReferrerType.PARTNER: LedgerKind.PARTNER_COMMISSION,
    ReferrerType.INFLUENCER: LedgerKind.INFLUENCER_COMMISSION,
    ReferrerType.CUSTOMER: LedgerKind.CUSTOMER_CREDIT,
}


class OutcomeStatus(str, Enum):
    RECORDED = "recorded"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class LedgerOutcome:
    """Result of ``record_completion``."""
    status: OutcomeStatus
    order_id: int
    entry: LedgerEntry | None = None
    reason: str | None = None


@dataclass(frozen=True)
class LedgerSummary:
    """Totals for one recipient, all in pence."""
    recipient_type: str
    recipient_id: int
    total_earned: int
    pending_total: int
    approved_total: int
    paid_total: int
    redeemed_total: int
    current_balance: int
    entry_count: int
    redemption_count: int

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _recipient_type(value) -> ReferrerType:
    try:
        return ReferrerType(value)
    except ValueError:
        raise InvalidInput(f"Unknown recipient type: {value}") from None


class LedgerCalculator:
    """Computes and aggregates commissions and customer credits.

    Operations:
    - record_completion: one entry per completed, referred order
    - summarize / reports: read-side folds over entries and redemptions
    - adjust_credit: manual admin balance change, never below zero
    - mark_paid: bulk pending/approved -> paid for one partner
    """

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger(__name__)

    # ==================== RECORDING ====================

    def _prior_completed_orders(self, session, order: Order) -> int:
        """Completed orders of the same customer that precede ``order``."""
        completed_at = order.completed_at
        earlier = Order.id < order.id
        if completed_at is not None:
            earlier = or_(
                Order.completed_at < completed_at,
                and_(Order.completed_at == completed_at, Order.id < order.id),
            )
        return session.execute(
            select(func.count(Order.id)).where(
                func.lower(Order.customer_email) == order.customer_email.lower(),
                Order.status == OrderStatus.COMPLETED.value,
                Order.id != order.id,
                earlier,
            )
        ).scalar_one()

    def record_completion(self, order_id: int) -> LedgerOutcome:
        """Record the commission or credit earned by a completed order.

        Safe to call repeatedly for the same order: only the first call
        writes.

        Args:
            order_id: Completed order ID

        Returns:
            LedgerOutcome (recorded, skipped or duplicate)

        Raises:
            NotFound: Order does not exist
            InvalidOrder: Order not completed, or its subtotal is not positive
            RecipientNotFound: The referring account is gone
        """
        with self.database.session() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            if order.subtotal_amount is None or order.subtotal_amount <= 0:
                raise InvalidOrder(f"Order {order_id} has no positive subtotal")
            if order.status != OrderStatus.COMPLETED.value:
                raise InvalidOrder(f"Order {order_id} is not completed")

            existing = session.execute(
                select(LedgerEntry).where(LedgerEntry.order_id == order_id)
            ).scalars().first()
            if existing is not None:
                self.logger.info("ledger_entry_duplicate", order_id=order_id, entry_id=existing.id)
                return LedgerOutcome(OutcomeStatus.DUPLICATE, order_id, entry=existing)

            customer = session.get(Customer, order.customer_id) if order.customer_id else None
            if customer is None:
                customer = session.execute(
                    select(Customer).where(Customer.email == order.customer_email.lower())
                ).scalars().first()
            if customer is None or not customer.is_attributed:
                self.logger.info("ledger_skipped_no_attribution", order_id=order_id)
                return LedgerOutcome(OutcomeStatus.SKIPPED, order_id, reason="no_attribution")

            recipient_type = ReferrerType(customer.referral_type)
            recipient = session.get(RECIPIENT_MODELS[recipient_type], customer.referrer_id)
            if recipient is None:
                self.logger.error(
                    "ledger_recipient_missing",
                    order_id=order_id,
                    recipient_type=recipient_type.value,
                    recipient_id=customer.referrer_id,
                )
                raise RecipientNotFound(recipient_type.value, customer.referrer_id)

            prior_orders = self._prior_completed_orders(session, order)
            if prior_orders == 0:
                tier, rate = CommissionTier.INITIAL, customer.referral_commission_rate
            else:
                tier, rate = CommissionTier.TRAILING, customer.referral_trailing_rate
            amount = percent_of(order.subtotal_amount, rate)

            is_credit = recipient_type == ReferrerType.CUSTOMER
            entry = LedgerEntry(
                order_id=order.id,
                recipient_type=recipient_type.value,
                recipient_id=recipient.id,
                kind=ENTRY_KINDS[recipient_type].value,
                tier=tier.value,
                order_amount=order.subtotal_amount,
                amount=amount,
                rate=rate,
                # Customer credits are spendable immediately
                status=LedgerStatus.APPROVED.value if is_credit else LedgerStatus.PENDING.value,
                referral_code=customer.referral_code_used,
                referred_customer_id=customer.id,
                referred_customer_email=customer.email,
            )
            session.add(entry)
            try:
                session.flush()
            except IntegrityError:
                # A concurrent delivery of the same webhook won the insert
                session.rollback()
                self.logger.info("ledger_entry_duplicate", order_id=order_id, race=True)
                return LedgerOutcome(OutcomeStatus.DUPLICATE, order_id)

            if is_credit:
                session.execute(
                    update(Customer)
                    .where(Customer.id == recipient.id)
                    .values(current_credit_balance=Customer.current_credit_balance + amount)
                    .execution_options(synchronize_session=False)
                )

        self.logger.info(
            "ledger_entry_recorded",
            order_id=order_id,
            recipient_type=recipient_type.value,
            recipient_id=entry.recipient_id,
            tier=tier.value,
            rate=str(rate),
            order_amount=entry.order_amount,
            amount=amount,
            prior_orders=prior_orders,
        )
        return LedgerOutcome(OutcomeStatus.RECORDED, order_id, entry=entry)

    # ==================== AGGREGATION ====================

    def _status_totals(self, session, recipient_type: ReferrerType, recipient_id: int) -> dict[str, tuple[int, int]]:
        rows = session.execute(
            select(LedgerEntry.status, func.coalesce(func.sum(LedgerEntry.amount), 0), func.count(LedgerEntry.id))
            .where(
                LedgerEntry.recipient_type == recipient_type.value,
                LedgerEntry.recipient_id == recipient_id,
            )
            .group_by(LedgerEntry.status)
        ).all()
        return {status: (int(total), int(count)) for status, total, count in rows}

    def _redemptions(self, session, email: str):
        return session.execute(
            select(Order)
            .where(
                func.lower(Order.customer_email) == email.lower(),
                Order.credit_applied > 0,
                Order.status == OrderStatus.COMPLETED.value,
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
        ).scalars().all()

    def summarize(self, recipient_type, recipient_id: int) -> LedgerSummary:
        """Fold a recipient's ledger entries (and, for customers, redemptions).

        Args:
            recipient_type: "partner", "influencer" or "customer"
            recipient_id: Recipient account ID

        Returns:
            LedgerSummary in pence
        """
        kind = _recipient_type(recipient_type)
        with self.database.session() as session:
            recipient = session.get(RECIPIENT_MODELS[kind], recipient_id)
            if recipient is None:
                raise RecipientNotFound(kind.value, recipient_id)

            totals = self._status_totals(session, kind, recipient_id)
            pending, pending_count = totals.get(LedgerStatus.PENDING.value, (0, 0))
            approved, approved_count = totals.get(LedgerStatus.APPROVED.value, (0, 0))
            paid, paid_count = totals.get(LedgerStatus.PAID.value, (0, 0))

            redeemed, redemption_count = 0, 0
            if kind == ReferrerType.CUSTOMER:
                # Redemptions live on the orders that consumed the credit
                redemptions = self._redemptions(session, recipient.email)
                redeemed = sum(order.credit_applied for order in redemptions)
                redemption_count = len(redemptions)
                current_balance = recipient.current_credit_balance or 0
            else:
                current_balance = pending + approved

        return LedgerSummary(
            recipient_type=kind.value,
            recipient_id=recipient_id,
            total_earned=pending + approved + paid,
            pending_total=pending,
            approved_total=approved,
            paid_total=paid,
            redeemed_total=redeemed,
            current_balance=current_balance,
            entry_count=pending_count + approved_count + paid_count,
            redemption_count=redemption_count,
        )

    def customer_credit_report(self, customer_id: int) -> dict[str, Any]:
        """Credits earned and redeemed by a customer, rendered in pounds."""
        summary = self.summarize(ReferrerType.CUSTOMER, customer_id)

        with self.database.session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise CustomerNotFound(customer_id)

            rows = session.execute(
                select(LedgerEntry, Order)
                .join(Order, LedgerEntry.order_id == Order.id)
                .where(
                    LedgerEntry.recipient_type == ReferrerType.CUSTOMER.value,
                    LedgerEntry.recipient_id == customer_id,
                )
                .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            ).all()
            redemptions = self._redemptions(session, customer.email)

            earned_credits = [
                {
                    "id": entry.id,
                    "order_id": entry.order_id,
                    "order_number": order.order_number,
                    "referred_customer_email": entry.referred_customer_email,
                    "order_amount_pounds": to_major(entry.order_amount),
                    "credit_amount_pounds": to_major(entry.amount),
                    "credit_rate": entry.rate,
                    "tier": entry.tier,
                    "status": entry.status,
                    "earned_date": entry.created_at,
                    "order_date": order.completed_at or order.created_at,
                }
                for entry, order in rows
            ]
            formatted_redemptions = [
                {
                    "id": order.id,
                    "order_number": order.order_number,
                    "redeemed_date": order.completed_at or order.created_at,
                    "order_total_pounds": to_major(order.total_amount + order.credit_applied),
                    "credit_used_pounds": to_major(order.credit_applied),
                    "amount_paid_pounds": to_major(order.total_amount),
                }
                for order in redemptions
            ]

            return {
                "customer": {
                    "id": customer.id,
                    "email": customer.email,
                    "name": customer.display_name,
                    "created_at": customer.created_at,
                },
                "summary": {
                    "current_balance_pounds": to_major(summary.current_balance),
                    "total_earned_pounds": to_major(summary.total_earned),
                    "pending_credits_pounds": to_major(summary.pending_total),
                    "approved_credits_pounds": to_major(summary.approved_total + summary.paid_total),
                    "total_redeemed_pounds": to_major(summary.redeemed_total),
                    "total_earned_credits_count": summary.entry_count,
                    "total_redemptions_count": summary.redemption_count,
                },
                "earned_credits": earned_credits,
                "redemptions": formatted_redemptions,
            }

    def partner_commission_report(self, partner_id: int, status: str | None = None) -> dict[str, Any]:
        """Commission totals and itemized entries for a partner.

        Args:
            partner_id: Partner ID
            status: "paid", "unpaid" or None for everything
        """
        if status not in (None, "paid", "unpaid"):
            raise InvalidInput("status must be 'paid' or 'unpaid'")

        with self.database.session() as session:
            if session.get(Partner, partner_id) is None:
                raise RecipientNotFound(ReferrerType.PARTNER.value, partner_id)

            query = select(LedgerEntry).where(
                LedgerEntry.recipient_type == ReferrerType.PARTNER.value,
                LedgerEntry.recipient_id == partner_id,
            )
            if status == "paid":
                query = query.where(LedgerEntry.status == LedgerStatus.PAID.value)
            elif status == "unpaid":
                query = query.where(LedgerEntry.status != LedgerStatus.PAID.value)
            entries = session.execute(
                query.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            ).scalars().all()

        paid = [e for e in entries if e.status == LedgerStatus.PAID.value]
        unpaid = [e for e in entries if e.status != LedgerStatus.PAID.value]
        paid_total = sum(e.amount for e in paid)
        unpaid_total = sum(e.amount for e in unpaid)

        return {
            "summary": {
                "total_commissions_pounds": to_major(paid_total + unpaid_total),
                "unpaid_total_pounds": to_major(unpaid_total),
                "paid_total_pounds": to_major(paid_total),
                "unpaid_count": len(unpaid),
                "paid_count": len(paid),
                "initial_orders_count": sum(1 for e in entries if e.tier == CommissionTier.INITIAL.value),
                "subsequent_orders_count": sum(1 for e in entries if e.tier == CommissionTier.TRAILING.value),
            },
            "commissions": [_entry_dict(e) for e in entries],
        }

    # ==================== MUTATIONS ====================

    def adjust_credit(
        self,
        customer_id: int,
        amount: int,
        reason: str,
        actor_id: str | None = None,
    ) -> CreditAdjustment:
        """Manually add (positive) or remove (negative) store credit.

        Raises:
            InvalidInput: Zero amount or missing reason
            CustomerNotFound: Unknown customer
            InsufficientBalance: The balance would drop below zero
        """
        if not isinstance(amount, int) or amount == 0:
            raise InvalidInput("amount must be a non-zero integer number of pence")
        if not reason or not reason.strip():
            raise InvalidInput("reason is required")

        with self.database.session() as session:
            result = session.execute(
                update(Customer)
                .where(
                    Customer.id == customer_id,
                    Customer.current_credit_balance + amount >= 0,
                )
                .values(current_credit_balance=Customer.current_credit_balance + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                customer = session.get(Customer, customer_id)
                if customer is None:
                    raise CustomerNotFound(customer_id)
                self.logger.warning(
                    "credit_adjustment_rejected",
                    customer_id=customer_id,
                    amount=amount,
                    balance=customer.current_credit_balance,
                )
                raise InsufficientBalance(-amount, customer.current_credit_balance)

            balance_after = session.execute(
                select(Customer.current_credit_balance).where(Customer.id == customer_id)
            ).scalar_one()
            adjustment = CreditAdjustment(
                customer_id=customer_id,
                amount=amount,
                balance_after=balance_after,
                reason=reason.strip(),
                actor_id=actor_id,
            )
            session.add(adjustment)

        self.logger.info(
            "credit_adjusted",
            customer_id=customer_id,
            amount=amount,
            balance_after=balance_after,
            actor_id=actor_id,
        )
        return adjustment

    def mark_paid(self, partner_id: int, order_ids: list[int]) -> int:
        """Mark a partner's commissions for the given orders as paid.

        Every order id must belong to one of the partner's commissions,
        otherwise nothing changes.

        Returns:
            Number of entries moved to paid
        """
        if not order_ids or not all(isinstance(i, int) for i in order_ids):
            raise InvalidInput("orderIds must be a non-empty list of integers")
        wanted = set(order_ids)

        with self.database.session() as session:
            owned = set(
                session.execute(
                    select(LedgerEntry.order_id).where(
                        LedgerEntry.order_id.in_(wanted),
                        LedgerEntry.recipient_type == ReferrerType.PARTNER.value,
                        LedgerEntry.recipient_id == partner_id,
                    )
                ).scalars().all()
            )
            if owned != wanted:
                self.logger.warning(
                    "mark_paid_rejected",
                    partner_id=partner_id,
                    foreign_order_ids=sorted(wanted - owned),
                )
                raise InvalidInput("Invalid order IDs or unauthorized")

            result = session.execute(
                update(LedgerEntry)
                .where(
                    LedgerEntry.order_id.in_(wanted),
                    LedgerEntry.status != LedgerStatus.PAID.value,
                )
                .values(status=LedgerStatus.PAID.value)
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount

        self.logger.info("commissions_marked_paid", partner_id=partner_id, count=changed)
        return changed


def _entry_dict(entry: LedgerEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "order_id": entry.order_id,
        "recipient_type": entry.recipient_type,
        "recipient_id": entry.recipient_id,
        "kind": entry.kind,
        "tier": entry.tier,
        "order_amount_pounds": to_major(entry.order_amount),
        "commission_amount_pounds": to_major(entry.amount),
        "commission_rate": entry.rate,
        "status": entry.status,
        "referral_code": entry.referral_code,
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
    }
