"""Checkout: order placement and completion."""

import secrets
from datetime import datetime
from typing import Callable

from sqlalchemy import case, select, update

from petprint.errors import CustomerNotFound, InsufficientBalance, InvalidInput, NotFound
from petprint.logging_config import get_logger
from petprint.money import percent_of
from petprint.storage.db import Database
from petprint.storage.models import Customer, Order, OrderStatus

logger = get_logger(__name__)


def generate_order_number(now: datetime) -> str:
    """Human-readable order number, e.g. ``PP-20260301-4F9A2C``."""
    return f"PP-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


class OrderService:
    """Places orders and moves them to completed.

    The referral discount is taken on the customer's first order after
    attribution; store credit is reserved at placement and deducted from the
    balance when the order completes.
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = datetime.utcnow):
        self.database = database
        self.clock = clock
        self.logger = get_logger(__name__)

    def place_order(
        self,
        customer_id: int,
        subtotal: int,
        shipping: int = 0,
        credit_to_apply: int = 0,
    ) -> Order:
        """Create a pending order for a customer.

        Args:
            customer_id: Customer placing the order
            subtotal: Item total in pence, before discount and credit
            shipping: Shipping in pence
            credit_to_apply: Store credit the customer wants to spend

        Returns:
            The pending Order

        Raises:
            InvalidInput: Non-positive subtotal or negative amounts
            CustomerNotFound: Unknown customer
            InsufficientBalance: More credit requested than the customer holds
        """
        if not isinstance(subtotal, int) or subtotal <= 0:
            raise InvalidInput("subtotal must be a positive integer number of pence")
        if shipping < 0 or credit_to_apply < 0:
            raise InvalidInput("shipping and credit_to_apply cannot be negative")

        with self.database.session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise CustomerNotFound(customer_id)

            takes_discount = customer.is_attributed and customer.referral_order_id is None
            discount = 0
            if takes_discount and customer.referral_discount_rate is not None:
                discount = percent_of(subtotal, customer.referral_discount_rate)

            if credit_to_apply > customer.current_credit_balance:
                raise InsufficientBalance(credit_to_apply, customer.current_credit_balance)
            credit = min(credit_to_apply, subtotal - discount)

            now = self.clock()
            order = Order(
                order_number=generate_order_number(now),
                customer_id=customer.id,
                customer_email=customer.email,
                subtotal_amount=subtotal,
                discount_amount=discount,
                credit_applied=credit,
                shipping_amount=shipping,
                total_amount=subtotal - discount - credit + shipping,
                referral_code=customer.referral_code_used,
                status=OrderStatus.PENDING.value,
                created_at=now,
            )
            session.add(order)
            session.flush()

            if takes_discount:
                claimed = session.execute(
                    update(Customer)
                    .where(Customer.id == customer.id, Customer.referral_order_id.is_(None))
                    .values(referral_order_id=order.id, referral_discount_applied=discount)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 0 and discount:
                    # A concurrent first order already took the discount
                    order.discount_amount = 0
                    order.credit_applied = min(credit_to_apply, subtotal)
                    order.total_amount = subtotal - order.credit_applied + shipping

        self.logger.info(
            "order_placed",
            order_id=order.id,
            order_number=order.order_number,
            customer_id=customer_id,
            subtotal=subtotal,
            discount=order.discount_amount,
            credit_applied=order.credit_applied,
            referral_code=order.referral_code,
        )
        return order

    def complete(self, order_id: int, payment_reference: str | None = None) -> bool:
        """Mark a pending order completed and redeem its reserved credit.

        Args:
            order_id: Order ID
            payment_reference: Payment intent or session ID

        Returns:
            True if this call performed the transition, False if the order
            was already completed or cancelled
        """
        with self.database.session() as session:
            result = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
                .values(
                    status=OrderStatus.COMPLETED.value,
                    completed_at=self.clock(),
                    payment_reference=payment_reference,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                if session.get(Order, order_id) is None:
                    raise NotFound(f"Order {order_id} not found")
                self.logger.info("order_already_completed", order_id=order_id)
                return False

            order = session.execute(select(Order).where(Order.id == order_id)).scalar_one()
            if order.credit_applied > 0 and order.customer_id is not None:
                self._redeem_credit(session, order)

        self.logger.info("order_completed", order_id=order_id, payment_reference=payment_reference)
        return True

    def _redeem_credit(self, session, order: Order) -> None:
        balance = session.execute(
            select(Customer.current_credit_balance).where(Customer.id == order.customer_id)
        ).scalar_one()
        if balance < order.credit_applied:
            self.logger.warning(
                "credit_redemption_shortfall",
                order_id=order.id,
                customer_id=order.customer_id,
                credit_applied=order.credit_applied,
                balance=balance,
            )

        amount = order.credit_applied
        session.execute(
            update(Customer)
            .where(Customer.id == order.customer_id)
            .values(
                current_credit_balance=case(
                    (Customer.current_credit_balance >= amount, Customer.current_credit_balance - amount),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        self.logger.info(
            "credit_redeemed",
            order_id=order.id,
            customer_id=order.customer_id,
            amount=amount,
        )
