"""Authentication dependencies for FastAPI."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from petprint.auth.tokens import Principal, Role, principal_from_token
from petprint.logging_config import get_logger

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal | None:
    """Get the authenticated caller, or None for anonymous requests."""
    if not credentials:
        return None

    principal = principal_from_token(credentials.credentials)
    if principal:
        request.state.principal = principal
    return principal


def require_auth(principal: Principal | None = Depends(get_current_principal)) -> Principal:
    """Require authentication - raises 401 if not authenticated.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if not principal:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_admin(principal: Principal = Depends(require_auth)) -> Principal:
    """Require admin privileges.

    Raises:
        HTTPException: 403 if not admin
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal


class RoleChecker:
    """Dependency restricting an endpoint to the given roles."""

    def __init__(self, allowed_roles: list[Role]):
        self.allowed_roles = allowed_roles

    def __call__(self, principal: Principal = Depends(require_auth)) -> Principal:
        if principal.role not in self.allowed_roles:
            logger.warning(
                "role_rejected",
                account_id=principal.account_id,
                role=principal.role.value,
                allowed=[r.value for r in self.allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied for this account type",
            )
        return principal


require_partner = RoleChecker([Role.PARTNER])
require_customer = RoleChecker([Role.CUSTOMER])
