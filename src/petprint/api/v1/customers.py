"""Customer credit and invitation endpoints."""

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from petprint.api.deps import get_code_issuer, get_ledger
from petprint.auth.middleware import require_admin, require_customer
from petprint.auth.tokens import Principal
from petprint.ledger.service import LedgerCalculator
from petprint.money import to_major
from petprint.referral.codes import CodeIssuer

router = APIRouter(prefix="/customers", tags=["customers"])


# ==================== MODELS ====================


class CreditAdjustmentRequest(BaseModel):
    """Manual credit change in pence; negative removes credit."""
    amount: int
    reason: str = Field(min_length=1, max_length=500)


class CreditAdjustmentResponse(BaseModel):
    success: bool = True
    customer_id: int
    amount: int
    new_balance: int
    new_balance_pounds: float


class PersonalCodeResponse(BaseModel):
    code: str


class InvitationRequest(BaseModel):
    """Invitation addressed to a friend."""
    referred_email: str = Field(min_length=3, max_length=255)
    discount_rate: Decimal | None = Field(default=None, ge=0, le=100)


class InvitationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    referral_code: str
    referred_email: str | None
    status: str
    expires_at: datetime | None = None


# ==================== ENDPOINTS ====================


@router.get("/{customer_id}/credits")
def get_customer_credits(
    customer_id: int,
    admin: Principal = Depends(require_admin),
    ledger: LedgerCalculator = Depends(get_ledger),
):
    """Credit summary, earned credits and redemptions for a customer."""
    return ledger.customer_credit_report(customer_id)


@router.post("/{customer_id}/credits", response_model=CreditAdjustmentResponse)
def adjust_customer_credits(
    customer_id: int,
    body: CreditAdjustmentRequest,
    admin: Principal = Depends(require_admin),
    ledger: LedgerCalculator = Depends(get_ledger),
):
    """Manually adjust a customer's credit balance.

    Rejected with 400 if the balance would go negative.
    """
    adjustment = ledger.adjust_credit(
        customer_id=customer_id,
        amount=body.amount,
        reason=body.reason,
        actor_id=str(admin.account_id),
    )
    return CreditAdjustmentResponse(
        customer_id=customer_id,
        amount=adjustment.amount,
        new_balance=adjustment.balance_after,
        new_balance_pounds=float(to_major(adjustment.balance_after)),
    )


@router.post("/me/personal-code", response_model=PersonalCodeResponse)
def create_personal_code(
    customer: Principal = Depends(require_customer),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """Get (or create) the caller's personal referral code."""
    return PersonalCodeResponse(code=issuer.assign_personal_code("customer", customer.account_id))


@router.post("/me/referrals", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
def create_referral(
    body: InvitationRequest,
    customer: Principal = Depends(require_customer),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """Invite a friend; the code resolves once the friend accepts."""
    return issuer.create_customer_referral(
        customer.account_id,
        body.referred_email,
        discount_rate=body.discount_rate,
    )
