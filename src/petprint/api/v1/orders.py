"""Checkout endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from petprint.api.deps import get_order_service
from petprint.auth.middleware import require_customer
from petprint.auth.tokens import Principal
from petprint.orders.service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


# ==================== MODELS ====================


class PlaceOrderRequest(BaseModel):
    """Amounts in pence."""
    subtotal: int = Field(gt=0)
    shipping: int = Field(default=0, ge=0)
    credit_to_apply: int = Field(default=0, ge=0)


class OrderResponse(BaseModel):
    id: int
    order_number: str
    status: str
    subtotal_amount: int
    discount_amount: int
    credit_applied: int
    shipping_amount: int
    total_amount: int
    referral_code: str | None = None
    created_at: datetime | None = None


# ==================== ENDPOINTS ====================


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def place_order(
    body: PlaceOrderRequest,
    customer: Principal = Depends(require_customer),
    orders: OrderService = Depends(get_order_service),
):
    """Place a pending order for the calling customer.

    The referral discount is applied on the customer's first order; the
    order completes when the payment webhook arrives.
    """
    order = orders.place_order(
        customer_id=customer.account_id,
        subtotal=body.subtotal,
        shipping=body.shipping,
        credit_to_apply=body.credit_to_apply,
    )
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        subtotal_amount=order.subtotal_amount,
        discount_amount=order.discount_amount,
        credit_applied=order.credit_applied,
        shipping_amount=order.shipping_amount,
        total_amount=order.total_amount,
        referral_code=order.referral_code,
        created_at=order.created_at,
    )
