"""Partner commission and invitation endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from petprint.api.deps import get_code_issuer, get_ledger
from petprint.auth.middleware import require_auth, require_partner
from petprint.auth.tokens import Principal, Role
from petprint.ledger.service import LedgerCalculator
from petprint.logging_config import get_logger
from petprint.referral.codes import CodeIssuer

logger = get_logger(__name__)

router = APIRouter(prefix="/partners", tags=["partners"])


# ==================== MODELS ====================


class MarkPaidRequest(BaseModel):
    """Bulk status change for the caller's commissions."""
    model_config = ConfigDict(populate_by_name=True)

    order_ids: list[int] = Field(alias="orderIds", min_length=1)
    action: Literal["markPaid"]


class MarkPaidResponse(BaseModel):
    success: bool = True
    updated: int


class ClaimCodeRequest(BaseModel):
    code: str


class ClaimCodeResponse(BaseModel):
    code: str
    status: str


class PersonalCodeResponse(BaseModel):
    code: str


class InvitationRequest(BaseModel):
    """Invitation addressed to one prospective customer."""
    referred_email: str = Field(min_length=3, max_length=255)
    commission_rate: Decimal | None = Field(default=None, ge=0, le=100)
    expires_in_days: int | None = Field(default=None, gt=0, le=365)


class InvitationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    referral_code: str
    referred_email: str | None
    status: str
    expires_at: datetime | None = None


# ==================== ENDPOINTS ====================


@router.get("/{partner_id}/commissions")
def get_partner_commissions(
    partner_id: int,
    status_filter: Literal["paid", "unpaid"] | None = Query(default=None, alias="status"),
    principal: Principal = Depends(require_auth),
    ledger: LedgerCalculator = Depends(get_ledger),
):
    """Commission summary and itemized orders (admin, or the partner itself)."""
    is_owner = principal.role == Role.PARTNER and principal.account_id == partner_id
    if not (principal.is_admin or is_owner):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to view these commissions",
        )
    return ledger.partner_commission_report(partner_id, status=status_filter)


@router.patch("/commissions", response_model=MarkPaidResponse)
def update_commissions(
    body: MarkPaidRequest,
    partner: Principal = Depends(require_partner),
    ledger: LedgerCalculator = Depends(get_ledger),
):
    """Mark the caller's commissions for the given orders as paid."""
    updated = ledger.mark_paid(partner.account_id, body.order_ids)
    return MarkPaidResponse(updated=updated)


@router.post("/me/personal-code", response_model=PersonalCodeResponse)
def create_personal_code(
    partner: Principal = Depends(require_partner),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """Get (or create) the caller's personal referral code."""
    return PersonalCodeResponse(code=issuer.assign_personal_code("partner", partner.account_id))


@router.post("/me/pre-registration-code", response_model=ClaimCodeResponse)
def claim_pre_registration_code(
    body: ClaimCodeRequest,
    partner: Principal = Depends(require_partner),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """Bind an invite code to the calling partner."""
    invite = issuer.claim_pre_registration_code(body.code, partner.account_id)
    return ClaimCodeResponse(code=invite.code, status=invite.status)


@router.post("/me/referrals", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
def create_referral(
    body: InvitationRequest,
    partner: Principal = Depends(require_partner),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """Invite a customer by email.

    409 when the email already belongs to a customer or has an open invitation.
    """
    return issuer.create_partner_referral(
        partner.account_id,
        body.referred_email,
        commission_rate=body.commission_rate,
        expires_in_days=body.expires_in_days,
    )


@router.get("/me/referrals")
def list_referrals(
    partner: Principal = Depends(require_partner),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """The caller's invitations, referred customers and funnel stats."""
    return issuer.partner_referral_report(partner.account_id)
