"""End-to-end referral journeys across attribution, checkout and payment."""

from decimal import Decimal

from sqlalchemy import select

from conftest import load
from petprint.ledger.models import LedgerEntry
from petprint.payments.stripe_service import WebhookProcessor
from petprint.storage.models import Customer, Partner


def pay(processor, event_id, order):
    return processor.handle_event(
        {
            "id": event_id,
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": f"pi_{event_id}", "metadata": {"order_id": str(order.id)}}},
        }
    )


def entries_for(database, recipient_type, recipient_id):
    with database.session() as session:
        return (
            session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.recipient_type == recipient_type, LedgerEntry.recipient_id == recipient_id)
                .order_by(LedgerEntry.id)
            )
            .scalars()
            .all()
        )


class TestPartnerJourney:
    def test_signup_checkout_and_payment(
        self, database, resolver, orders, ledger, clock, make_partner, make_customer
    ):
        processor = WebhookProcessor(database, orders=orders, ledger=ledger)
        partner = make_partner(
            personal_referral_code="VETCLINIC",
            commission_rate=Decimal("10.00"),
            lifetime_commission_rate=Decimal("5.00"),
            customer_discount_rate=Decimal("10.00"),
        )
        customer = make_customer(email="owner@example.com", is_registered=False)

        assert resolver.verify("vetclinic").referrer.id == partner.id
        assert resolver.attribute(customer.id, "VETCLINIC").attributed is True

        order = orders.place_order(customer.id, 5000)
        assert order.discount_amount == 500

        # Rates edited after signup do not reach this customer
        with database.session() as session:
            session.get(Partner, partner.id).commission_rate = Decimal("40.00")

        clock.advance(minutes=5)
        assert pay(processor, "evt_first", order)["ledger"] == "recorded"

        [entry] = entries_for(database, "partner", partner.id)
        assert entry.amount == 500
        assert entry.tier == "initial"
        assert entry.status == "pending"
        assert load(database, Customer, customer.id).referral_discount_applied == 500

        clock.advance(days=20)
        repeat = orders.place_order(customer.id, 8000)
        assert repeat.discount_amount == 0
        clock.advance(minutes=5)
        pay(processor, "evt_repeat", repeat)

        first, second = entries_for(database, "partner", partner.id)
        assert second.tier == "trailing"
        assert second.amount == 400

        summary = ledger.summarize("partner", partner.id)
        assert summary.total_earned == 900
        assert summary.pending_total == 900

        assert ledger.mark_paid(partner.id, [order.id, repeat.id]) == 2
        assert ledger.summarize("partner", partner.id).paid_total == 900


class TestFriendJourney:
    def test_credit_earned_and_spent(self, database, resolver, orders, ledger, clock, make_customer):
        processor = WebhookProcessor(database, orders=orders, ledger=ledger)
        referrer = make_customer(email="fan@example.com", personal_referral_code="FRIEND12")
        friend = make_customer(email="friend@example.com", is_registered=False)

        resolver.attribute(friend.id, "FRIEND12")
        order = orders.place_order(friend.id, 6000)
        clock.advance(minutes=1)
        pay(processor, "evt_friend", order)

        balance = load(database, Customer, referrer.id).current_credit_balance
        [credit] = entries_for(database, "customer", referrer.id)
        assert credit.status == "approved"
        assert balance == credit.amount > 0

        spend = orders.place_order(referrer.id, 3000, credit_to_apply=balance)
        assert spend.credit_applied == balance
        clock.advance(minutes=1)
        pay(processor, "evt_spend", spend)

        assert load(database, Customer, referrer.id).current_credit_balance == 0
        report = ledger.customer_credit_report(referrer.id)
        assert len(report["redemptions"]) == 1
        assert len(report["earned_credits"]) == 1
