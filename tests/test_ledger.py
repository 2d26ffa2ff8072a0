"""Tests for commission and credit calculation."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import load, persist
from petprint.errors import (
    CustomerNotFound,
    InsufficientBalance,
    InvalidInput,
    InvalidOrder,
    NotFound,
    RecipientNotFound,
)
from petprint.ledger.models import CreditAdjustment, LedgerEntry
from petprint.ledger.service import OutcomeStatus
from petprint.referral.models import InfluencerReferralCode
from petprint.storage.models import Customer, Order, Partner


def attributed_customer(make_customer, resolver, code, **overrides):
    customer = make_customer(**overrides)
    resolver.attribute(customer.id, code)
    return customer


def completed_order(orders, clock, customer_id, subtotal, credit=0):
    order = orders.place_order(customer_id, subtotal, credit_to_apply=credit)
    clock.advance(minutes=5)
    orders.complete(order.id, payment_reference=f"pi_{order.id}")
    return order


def entry_count(database) -> int:
    with database.session() as session:
        return session.execute(select(func.count(LedgerEntry.id))).scalar_one()


@pytest.fixture
def partner(make_partner):
    return make_partner(
        personal_referral_code="PARTNER1",
        commission_rate=Decimal("20.00"),
        lifetime_commission_rate=Decimal("5.00"),
    )


@pytest.fixture
def referred(make_customer, resolver, partner):
    return attributed_customer(make_customer, resolver, "PARTNER1")


class TestTiering:
    """First completed order earns the initial rate, later ones the trailing rate."""

    def test_initial_then_trailing(self, ledger, orders, clock, referred, partner):
        first = completed_order(orders, clock, referred.id, 10000)
        second = completed_order(orders, clock, referred.id, 10000)

        first_outcome = ledger.record_completion(first.id)
        second_outcome = ledger.record_completion(second.id)

        assert first_outcome.status == OutcomeStatus.RECORDED
        assert first_outcome.entry.amount == 2000
        assert first_outcome.entry.tier == "initial"
        assert first_outcome.entry.recipient_type == "partner"
        assert first_outcome.entry.recipient_id == partner.id
        assert first_outcome.entry.status == "pending"

        assert second_outcome.entry.amount == 500
        assert second_outcome.entry.tier == "trailing"

    def test_tier_derived_from_history_not_call_order(self, ledger, orders, clock, referred):
        """Recording the later order first still classifies it as trailing."""
        first = completed_order(orders, clock, referred.id, 10000)
        second = completed_order(orders, clock, referred.id, 10000)

        assert ledger.record_completion(second.id).entry.amount == 500
        assert ledger.record_completion(first.id).entry.amount == 2000

    def test_pending_orders_do_not_count(self, ledger, orders, clock, referred):
        orders.place_order(referred.id, 7000)
        order = completed_order(orders, clock, referred.id, 10000)

        assert ledger.record_completion(order.id).entry.tier == "initial"

    def test_commission_on_pre_discount_subtotal(self, ledger, orders, clock, referred):
        order = completed_order(orders, clock, referred.id, 10000)
        assert order.discount_amount == 1000

        assert ledger.record_completion(order.id).entry.order_amount == 10000

    def test_rounding_half_up(self, ledger, orders, clock, make_customer, make_partner, resolver):
        make_partner(personal_referral_code="FIFTEEN1", commission_rate=Decimal("15.00"))
        customer = attributed_customer(make_customer, resolver, "FIFTEEN1")
        order = completed_order(orders, clock, customer.id, 333)

        assert ledger.record_completion(order.id).entry.amount == 50

    def test_influencer_commission(self, ledger, orders, clock, database, make_customer, make_influencer, resolver):
        influencer = make_influencer(commission_rate=Decimal("15.00"))
        persist(database, InfluencerReferralCode(influencer_id=influencer.id, code="INFL1234"))
        customer = attributed_customer(make_customer, resolver, "INFL1234")
        order = completed_order(orders, clock, customer.id, 4000)

        entry = ledger.record_completion(order.id).entry

        assert entry.recipient_type == "influencer"
        assert entry.kind == "influencer_commission"
        assert entry.amount == 600
        assert entry.status == "pending"


class TestCustomerCredit:
    @pytest.fixture
    def referrer(self, make_customer):
        return make_customer(personal_referral_code="FRIEND12")

    def test_credit_is_approved_and_added_to_balance(self, ledger, orders, clock, database, make_customer, resolver, referrer):
        friend = attributed_customer(make_customer, resolver, "FRIEND12")
        order = completed_order(orders, clock, friend.id, 6000)

        entry = ledger.record_completion(order.id).entry

        assert entry.kind == "customer_credit"
        assert entry.status == "approved"
        assert entry.amount == 600
        assert load(database, Customer, referrer.id).current_credit_balance == 600

    def test_duplicate_does_not_double_credit(self, ledger, orders, clock, database, make_customer, resolver, referrer):
        friend = attributed_customer(make_customer, resolver, "FRIEND12")
        order = completed_order(orders, clock, friend.id, 6000)

        ledger.record_completion(order.id)
        ledger.record_completion(order.id)

        assert load(database, Customer, referrer.id).current_credit_balance == 600


class TestRecordCompletionOutcomes:
    def test_duplicate_call_writes_once(self, ledger, orders, clock, database, referred):
        order = completed_order(orders, clock, referred.id, 10000)

        first = ledger.record_completion(order.id)
        second = ledger.record_completion(order.id)

        assert first.status == OutcomeStatus.RECORDED
        assert second.status == OutcomeStatus.DUPLICATE
        assert second.entry.id == first.entry.id
        assert entry_count(database) == 1

    def test_unattributed_order_is_skipped(self, ledger, orders, clock, database, make_customer):
        customer = make_customer()
        order = completed_order(orders, clock, customer.id, 10000)

        outcome = ledger.record_completion(order.id)

        assert outcome.status == OutcomeStatus.SKIPPED
        assert outcome.entry is None
        assert entry_count(database) == 0

    def test_missing_order(self, ledger):
        with pytest.raises(NotFound):
            ledger.record_completion(12345)

    def test_pending_order_is_invalid(self, ledger, orders, referred):
        order = orders.place_order(referred.id, 10000)

        with pytest.raises(InvalidOrder):
            ledger.record_completion(order.id)

    def test_zero_amount_order_is_invalid(self, ledger, database, referred, clock):
        order = persist(
            database,
            Order(
                order_number="PP-ZERO",
                customer_id=referred.id,
                customer_email=referred.email,
                subtotal_amount=0,
                total_amount=0,
                status="completed",
                completed_at=clock(),
            ),
        )

        with pytest.raises(InvalidOrder):
            ledger.record_completion(order.id)
        assert entry_count(database) == 0

    def test_missing_recipient_writes_nothing(self, ledger, orders, clock, database, referred, partner):
        order = completed_order(orders, clock, referred.id, 10000)
        with database.session() as session:
            session.delete(session.get(Partner, partner.id))

        with pytest.raises(RecipientNotFound):
            ledger.record_completion(order.id)
        assert entry_count(database) == 0

    def test_snapshot_rate_survives_partner_edit(self, ledger, orders, clock, database, referred, partner):
        with database.session() as session:
            session.get(Partner, partner.id).commission_rate = Decimal("50.00")
        order = completed_order(orders, clock, referred.id, 10000)

        assert ledger.record_completion(order.id).entry.amount == 2000


class TestSummaries:
    def test_partner_summary_by_status(self, ledger, orders, clock, referred, partner):
        first = completed_order(orders, clock, referred.id, 10000)
        second = completed_order(orders, clock, referred.id, 10000)
        ledger.record_completion(first.id)
        ledger.record_completion(second.id)
        ledger.mark_paid(partner.id, [first.id])

        summary = ledger.summarize("partner", partner.id)

        assert summary.total_earned == 2500
        assert summary.paid_total == 2000
        assert summary.pending_total == 500
        assert summary.approved_total == 0
        assert summary.redeemed_total == 0
        assert summary.current_balance == 500
        assert summary.entry_count == 2

    def test_customer_summary_includes_redemptions(
        self, ledger, orders, clock, database, make_customer, resolver
    ):
        referrer = make_customer(personal_referral_code="FRIEND12")
        friend = attributed_customer(make_customer, resolver, "FRIEND12")
        ledger.record_completion(completed_order(orders, clock, friend.id, 10000).id)

        completed_order(orders, clock, referrer.id, 3000, credit=400)

        summary = ledger.summarize("customer", referrer.id)
        assert summary.total_earned == 1000
        assert summary.approved_total == 1000
        assert summary.redeemed_total == 400
        assert summary.redemption_count == 1
        assert summary.current_balance == 600

    def test_unknown_recipient(self, ledger):
        with pytest.raises(RecipientNotFound):
            ledger.summarize("partner", 404)

    def test_unknown_recipient_type(self, ledger):
        with pytest.raises(InvalidInput):
            ledger.summarize("affiliate", 1)

    def test_customer_credit_report(self, ledger, orders, clock, make_customer, resolver):
        referrer = make_customer(personal_referral_code="FRIEND12")
        friend = attributed_customer(make_customer, resolver, "FRIEND12")
        ledger.record_completion(completed_order(orders, clock, friend.id, 10000).id)
        completed_order(orders, clock, referrer.id, 3000, credit=400)

        report = ledger.customer_credit_report(referrer.id)

        assert report["customer"]["id"] == referrer.id
        assert report["summary"]["current_balance_pounds"] == Decimal("6.00")
        assert report["summary"]["total_earned_pounds"] == Decimal("10.00")
        assert report["summary"]["total_redeemed_pounds"] == Decimal("4.00")
        assert report["earned_credits"][0]["credit_amount_pounds"] == Decimal("10.00")
        assert report["earned_credits"][0]["referred_customer_email"] == friend.email
        assert report["redemptions"][0]["credit_used_pounds"] == Decimal("4.00")
        assert report["redemptions"][0]["amount_paid_pounds"] == Decimal("26.00")

    def test_partner_commission_report_filters(self, ledger, orders, clock, referred, partner):
        first = completed_order(orders, clock, referred.id, 10000)
        second = completed_order(orders, clock, referred.id, 10000)
        ledger.record_completion(first.id)
        ledger.record_completion(second.id)
        ledger.mark_paid(partner.id, [first.id])

        everything = ledger.partner_commission_report(partner.id)
        unpaid = ledger.partner_commission_report(partner.id, status="unpaid")

        assert everything["summary"]["total_commissions_pounds"] == Decimal("25.00")
        assert everything["summary"]["initial_orders_count"] == 1
        assert everything["summary"]["subsequent_orders_count"] == 1
        assert unpaid["summary"]["unpaid_count"] == 1
        assert unpaid["summary"]["paid_count"] == 0
        assert [c["order_id"] for c in unpaid["commissions"]] == [second.id]

    def test_partner_commission_report_bad_status(self, ledger, partner):
        with pytest.raises(InvalidInput):
            ledger.partner_commission_report(partner.id, status="everything")


class TestAdjustCredit:
    def test_add_and_remove(self, ledger, database, make_customer):
        customer = make_customer()

        ledger.adjust_credit(customer.id, 1500, "Goodwill gesture", actor_id="7")
        adjustment = ledger.adjust_credit(customer.id, -500, "Correction", actor_id="7")

        assert adjustment.balance_after == 1000
        assert load(database, Customer, customer.id).current_credit_balance == 1000
        with database.session() as session:
            assert session.execute(select(func.count(CreditAdjustment.id))).scalar_one() == 2

    def test_negative_balance_rejected(self, ledger, database, make_customer):
        customer = make_customer(current_credit_balance=300)

        with pytest.raises(InsufficientBalance) as exc_info:
            ledger.adjust_credit(customer.id, -301, "Too much")

        assert exc_info.value.available == 300
        assert load(database, Customer, customer.id).current_credit_balance == 300

    def test_down_to_exactly_zero(self, ledger, database, make_customer):
        customer = make_customer(current_credit_balance=300)

        assert ledger.adjust_credit(customer.id, -300, "Clear").balance_after == 0

    def test_unknown_customer(self, ledger):
        with pytest.raises(CustomerNotFound):
            ledger.adjust_credit(999, 100, "Nobody")

    @pytest.mark.parametrize("amount,reason", [(0, "Nothing"), (100, ""), (100, "   ")])
    def test_invalid_input(self, ledger, make_customer, amount, reason):
        customer = make_customer()

        with pytest.raises(InvalidInput):
            ledger.adjust_credit(customer.id, amount, reason)


class TestMarkPaid:
    def test_marks_only_owned_orders(self, ledger, orders, clock, database, referred, partner, make_partner, make_customer, resolver):
        other = make_partner(personal_referral_code="OTHER001")
        other_customer = attributed_customer(make_customer, resolver, "OTHER001")
        mine = completed_order(orders, clock, referred.id, 10000)
        theirs = completed_order(orders, clock, other_customer.id, 10000)
        ledger.record_completion(mine.id)
        ledger.record_completion(theirs.id)

        with pytest.raises(InvalidInput):
            ledger.mark_paid(partner.id, [mine.id, theirs.id])

        # Nothing changed, not even the partner's own entry
        assert ledger.summarize("partner", partner.id).paid_total == 0
        assert ledger.summarize("partner", other.id).paid_total == 0

    def test_repeat_is_harmless(self, ledger, orders, clock, referred, partner):
        order = completed_order(orders, clock, referred.id, 10000)
        ledger.record_completion(order.id)

        assert ledger.mark_paid(partner.id, [order.id]) == 1
        assert ledger.mark_paid(partner.id, [order.id]) == 0

    def test_empty_list(self, ledger, partner):
        with pytest.raises(InvalidInput):
            ledger.mark_paid(partner.id, [])
