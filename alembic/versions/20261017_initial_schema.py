"""Initial referral and ledger schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates tables for:
- partners, influencers, customers: accounts and customer attribution
- orders: shop orders in pence
- pre_registration_codes, partner_referrals, customer_referrals,
  influencer_referral_codes: one table per referral mechanism
- commissions: one ledger entry per completed order
- credit_adjustments: manual admin credit changes
- processed_webhook_events: webhook idempotency
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

RATE = sa.Numeric(5, 2)


def _counters() -> list[sa.Column]:
    return [
        sa.Column("scan_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("conversions", sa.Integer(), nullable=False, server_default="0"),
    ]


def upgrade() -> None:
    """Create referral and ledger tables."""

    op.create_table(
        "partners",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("logo_url", sa.String(500), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("personal_referral_code", sa.String(32), nullable=True),
        sa.Column("referral_scan_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("referral_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commission_rate", RATE, nullable=True),
        sa.Column("lifetime_commission_rate", RATE, nullable=True),
        sa.Column("customer_discount_rate", RATE, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_partners_email", "partners", ["email"], unique=True)
    op.create_index("ix_partners_personal_referral_code", "partners", ["personal_referral_code"], unique=True)

    op.create_table(
        "influencers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("commission_rate", RATE, nullable=True),
        sa.Column("lifetime_commission_rate", RATE, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_index("ix_influencers_email", "influencers", ["email"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("is_registered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("personal_referral_code", sa.String(32), nullable=True),
        sa.Column("referral_scan_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("referral_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_credit_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("referral_type", sa.String(20), nullable=True),
        sa.Column("referrer_id", sa.Integer(), nullable=True),
        sa.Column("referral_source", sa.String(40), nullable=True),
        sa.Column("referral_code_used", sa.String(32), nullable=True),
        sa.Column("referral_discount_rate", RATE, nullable=True),
        sa.Column("referral_discount_applied", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("referral_commission_rate", RATE, nullable=True),
        sa.Column("referral_trailing_rate", RATE, nullable=True),
        sa.Column("referral_applied_at", sa.DateTime(), nullable=True),
        sa.Column("referral_order_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_customers_email", "customers", ["email"], unique=True)
    op.create_index("ix_customers_personal_referral_code", "customers", ["personal_referral_code"], unique=True)
    op.create_index("ix_customers_referral_type", "customers", ["referral_type"])
    op.create_index("ix_customers_referrer_id", "customers", ["referrer_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(50), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=False),
        sa.Column("subtotal_amount", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credit_applied", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shipping_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(32), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])
    op.create_index("ix_orders_customer_email", "orders", ["customer_email"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_completed_at", "orders", ["completed_at"])

    op.create_table(
        "pre_registration_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("partner_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("expiration_date", sa.DateTime(), nullable=True),
        sa.Column("batch_label", sa.String(100), nullable=True),
        *_counters(),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pre_registration_codes_code", "pre_registration_codes", ["code"], unique=True)
    op.create_index("ix_pre_registration_codes_partner_id", "pre_registration_codes", ["partner_id"])

    op.create_table(
        "partner_referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("partner_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(32), nullable=False),
        sa.Column("referred_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("commission_rate", RATE, nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        *_counters(),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_partner_referrals_referral_code", "partner_referrals", ["referral_code"], unique=True)
    op.create_index("ix_partner_referrals_partner_id", "partner_referrals", ["partner_id"])

    op.create_table(
        "customer_referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referrer_customer_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(32), nullable=False),
        sa.Column("referred_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("discount_rate", RATE, nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        *_counters(),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referrer_customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_customer_referrals_referral_code", "customer_referrals", ["referral_code"], unique=True)
    op.create_index("ix_customer_referrals_referrer_customer_id", "customer_referrals", ["referrer_customer_id"])

    op.create_table(
        "influencer_referral_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("influencer_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("discount_rate", RATE, nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        *_counters(),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["influencer_id"], ["influencers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_influencer_referral_codes_code", "influencer_referral_codes", ["code"], unique=True)
    op.create_index("ix_influencer_referral_codes_influencer_id", "influencer_referral_codes", ["influencer_id"])

    op.create_table(
        "commissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("recipient_type", sa.String(20), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("order_amount", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("rate", RATE, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("referral_code", sa.String(32), nullable=True),
        sa.Column("referred_customer_id", sa.Integer(), nullable=True),
        sa.Column("referred_customer_email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", name="uq_commissions_order_id"),
    )
    op.create_index("ix_commissions_order_id", "commissions", ["order_id"])
    op.create_index("ix_commissions_status", "commissions", ["status"])
    op.create_index("ix_commissions_recipient", "commissions", ["recipient_type", "recipient_id"])

    op.create_table(
        "credit_adjustments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_adjustments_customer_id", "credit_adjustments", ["customer_id"])

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_processed_webhook_events_event_id", "processed_webhook_events", ["event_id"], unique=True)


def downgrade() -> None:
    """Drop referral and ledger tables."""
    op.drop_table("processed_webhook_events")
    op.drop_table("credit_adjustments")
    op.drop_table("commissions")
    op.drop_table("influencer_referral_codes")
    op.drop_table("customer_referrals")
    op.drop_table("partner_referrals")
    op.drop_table("pre_registration_codes")
    op.drop_table("orders")
    op.drop_table("customers")
    op.drop_table("influencers")
    op.drop_table("partners")
