"""
Role-Based Access Control (RBAC) dependencies.

Buyers run RFQs; suppliers only see their own quote requests. A supplier
token carries a ``supplier_id`` claim which scopes every supplier action.
"""
from enum import Enum
from typing import Optional
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials

from app.core.security import decode_token, security


class Role(str, Enum):
    ADMIN = "admin"
    BUYER = "buyer"
    SUPPLIER = "supplier"
    VIEWER = "viewer"


# Role hierarchy: higher index = more permissions
ROLE_HIERARCHY = {
    Role.VIEWER: 0,
    Role.SUPPLIER: 1,
    Role.BUYER: 2,
    Role.ADMIN: 3,
}


def has_permission(user_role: Role, required_role: Role) -> bool:
    """Check if user role has sufficient permissions."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def _role_of(payload: dict) -> Role:
    try:
        return Role(payload.get("role", "viewer"))
    except ValueError:
        return Role.VIEWER


def _context(payload: dict) -> dict:
    # Extract user_id with fallback for different token formats
    user_id_raw = payload.get("sub") or payload.get("user_id") or payload.get("id")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )
    user_id = int(user_id_raw)
    supplier_id = payload.get("supplier_id")

    return {
        "sub": str(user_id),
        "user_id": user_id,
        "email": payload.get("email"),
        "role": _role_of(payload),
        "supplier_id": str(supplier_id) if supplier_id is not None else None,
    }


class RBACChecker:
    """Dependency for checking role-based access. Returns the user context."""

    def __init__(self, required_role: Role):
        self.required_role = required_role

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> dict:
        context = _context(decode_token(credentials.credentials))

        if not has_permission(context["role"], self.required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {self.required_role.value}",
            )

        return context


# Convenience dependencies for common role checks
require_supplier = RBACChecker(Role.SUPPLIER)
require_buyer = RBACChecker(Role.BUYER)


def check_supplier_access(user_context: dict, supplier_id: Optional[str]) -> None:
    """Buyers see every supplier; a supplier only its own records."""
    if has_permission(user_context["role"], Role.BUYER):
        return
    if user_context["role"] == Role.SUPPLIER and user_context.get("supplier_id") == str(supplier_id):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Access denied to this supplier's quote",
    )
