"""Referral code verification and attribution endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from petprint.api.deps import get_code_issuer, get_resolver
from petprint.api.rate_limit import limiter
from petprint.auth.middleware import require_customer
from petprint.auth.tokens import Principal
from petprint.logging_config import get_logger
from petprint.referral.codes import CodeIssuer
from petprint.referral.service import ReferralResolver
from petprint.referral.sources import ResolvedCode
from petprint.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


# ==================== MODELS ====================


class ReferrerResponse(BaseModel):
    """The party a code credits."""
    id: int
    type: str
    name: str
    avatar_url: str | None = None
    details: dict[str, Any] = {}


class VerifyResponse(BaseModel):
    """A resolved referral code."""
    id: int
    code: str
    type: str
    status: str
    expires_at: datetime | None = None
    commission_rate: float
    discount_rate: float
    referrer: ReferrerResponse


class AttributeRequest(BaseModel):
    """Request to attribute a customer to a code."""
    customer_id: int = Field(gt=0)
    customer_email: str | None = None
    order_subtotal: int | None = Field(default=None, ge=0)


class AttributeResponse(BaseModel):
    success: bool = True
    attributed: bool
    referrer_type: str
    referrer_id: int
    discount_rate: float
    discount_applied: int


class InvitationDecision(BaseModel):
    code: str
    status: str


def _verify_response(resolved: ResolvedCode) -> VerifyResponse:
    record, referrer = resolved.record, resolved.referrer
    return VerifyResponse(
        id=record.id,
        code=record.code,
        type=record.kind.value,
        status=record.status,
        expires_at=record.expires_at,
        commission_rate=float(record.commission_rate),
        discount_rate=float(record.discount_rate),
        referrer=ReferrerResponse(
            id=referrer.id,
            type=referrer.type.value,
            name=referrer.name,
            avatar_url=referrer.avatar_url,
            details=referrer.details,
        ),
    )


# ==================== ENDPOINTS ====================


@router.get("/verify/{code}", response_model=VerifyResponse)
@limiter.limit(settings.rate_limit_verify)
def verify_code(request: Request, code: str, resolver: ReferralResolver = Depends(get_resolver)):
    """Verify a referral code and count the scan.

    404 when no source matches, 410 when the matching code has expired.
    """
    return _verify_response(resolver.verify(code))


@router.post("/verify/{code}", response_model=AttributeResponse)
@limiter.limit(settings.rate_limit_attribute)
def attribute_code(
    request: Request,
    code: str,
    body: AttributeRequest,
    resolver: ReferralResolver = Depends(get_resolver),
):
    """Record a referral on a customer.

    A customer who already carries a referral keeps it; the response then
    has ``attributed: false``.
    """
    result = resolver.attribute(
        customer_id=body.customer_id,
        code=code,
        customer_email=body.customer_email,
        order_subtotal=body.order_subtotal,
    )
    return AttributeResponse(
        attributed=result.attributed,
        referrer_type=result.resolved.referrer.type.value,
        referrer_id=result.resolved.referrer.id,
        discount_rate=float(result.resolved.record.discount_rate),
        discount_applied=result.discount_applied,
    )


@router.post("/invitations/{code}/accept", response_model=InvitationDecision)
def accept_invitation(
    code: str,
    customer: Principal = Depends(require_customer),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """Accept an invitation addressed to the caller's email."""
    invite = issuer.accept_invitation(code, customer.account_id)
    return InvitationDecision(code=invite.referral_code, status=invite.status)


@router.post("/invitations/{code}/decline", response_model=InvitationDecision)
def decline_invitation(
    code: str,
    customer: Principal = Depends(require_customer),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    invite = issuer.decline_invitation(code, customer.account_id)
    return InvitationDecision(code=invite.referral_code, status=invite.status)
