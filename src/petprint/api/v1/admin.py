"""Admin endpoints."""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from petprint.api.deps import get_code_issuer
from petprint.auth.middleware import require_admin
from petprint.auth.tokens import Principal
from petprint.referral.codes import CodeIssuer

router = APIRouter(prefix="/admin", tags=["admin"])


class IssueCodesRequest(BaseModel):
    count: int = Field(gt=0, le=1000)
    expires_in_days: int | None = Field(default=None, gt=0)
    batch_label: str | None = Field(default=None, max_length=100)


class IssueCodesResponse(BaseModel):
    count: int
    codes: list[str]


@router.post("/pre-registration-codes", response_model=IssueCodesResponse, status_code=status.HTTP_201_CREATED)
def issue_pre_registration_codes(
    body: IssueCodesRequest,
    admin: Principal = Depends(require_admin),
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    """Issue a batch of partner invite codes."""
    codes = issuer.issue_pre_registration_batch(
        count=body.count,
        expires_in_days=body.expires_in_days,
        batch_label=body.batch_label,
    )
    return IssueCodesResponse(count=len(codes), codes=codes)
