"""
Role-Based Access Control (RBAC) dependencies.
"""
from enum import Enum
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials

from partflow.core.security import decode_token, security


class Role(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"


# Role hierarchy: higher index = more permissions
ROLE_HIERARCHY = {
    Role.VIEWER: 0,
    Role.OPERATOR: 1,
    Role.ADMIN: 2,
}


def has_permission(user_role: Role, required_role: Role) -> bool:
    """Check if user role has sufficient permissions."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def _parse_role(payload: dict) -> Role:
    try:
        return Role(payload.get("role", "viewer"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unknown role in token",
        )


def _user_context(payload: dict) -> dict:
    user_id_raw = payload.get("sub") or payload.get("user_id")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )
    try:
        user_id = int(user_id_raw)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: user identifier must be numeric",
        )
    return {
        "sub": str(user_id_raw),
        "user_id": user_id,
        "email": payload.get("email"),
        "role": _parse_role(payload),
    }


class RBACChecker:
    """Dependency for checking role-based access."""

    def __init__(self, required_role: Role):
        self.required_role = required_role

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> dict:
        context = _user_context(decode_token(credentials.credentials))

        if not has_permission(context["role"], self.required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {self.required_role.value}",
            )

        return context


# Convenience dependencies for common role checks
require_operator = RBACChecker(Role.OPERATOR)


async def get_current_user_context(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """Get current user context from the bearer token."""
    return _user_context(decode_token(credentials.credentials))
