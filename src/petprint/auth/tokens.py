"""Bearer token verification.

Tokens are issued by the external auth provider and signed with the shared
secret. ``create_access_token`` exists for service-to-service calls and
tests.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from jose import JWTError, jwt

from petprint.logging_config import get_logger
from petprint.settings import settings

logger = get_logger(__name__)

JWT_EXPIRE_HOURS = 2


class Role(str, Enum):
    ADMIN = "admin"
    PARTNER = "partner"
    CUSTOMER = "customer"
    INFLUENCER = "influencer"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: account id plus role."""
    account_id: int
    role: Role
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def create_access_token(
    account_id: int,
    role: Role | str,
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token.

    Args:
        account_id: Account ID placed in ``sub``
        role: Account role
        email: Optional email claim
        expires_delta: Optional expiration time

    Returns:
        JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=JWT_EXPIRE_HOURS)

    now = datetime.utcnow()
    payload = {
        "sub": str(account_id),
        "role": Role(role).value,
        "exp": now + expires_delta,
        "iat": now,
    }
    if email:
        payload["email"] = email

    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any] | None:
    """Verify and decode a token, returning None if it is invalid or expired."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug("token_verification_failed", error=str(e))
        return None


def principal_from_token(token: str) -> Principal | None:
    payload = verify_token(token)
    if not payload:
        return None

    try:
        return Principal(
            account_id=int(payload["sub"]),
            role=Role(payload.get("role", Role.CUSTOMER.value)),
            email=payload.get("email"),
        )
    except (KeyError, ValueError) as e:
        logger.debug("token_claims_invalid", error=str(e))
        return None
