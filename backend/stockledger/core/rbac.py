"""Role-Based Access Control (RBAC) utilities.

The stock ledger does not own user accounts. It trusts the bearer token
issued by the surrounding back office and turns the role claim into an
authorization decision per operation.
"""

from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from stockledger.core.security import decode_access_token


class UserRole(str, Enum):
    """User roles for RBAC."""

    OWNER = "owner"
    MANAGER = "manager"
    STAFF = "staff"


# Role hierarchy: owner > manager > staff
ROLE_HIERARCHY = {
    UserRole.OWNER: 3,
    UserRole.MANAGER: 2,
    UserRole.STAFF: 1,
}


class Permission(str, Enum):
    """Operations guarded by the ledger."""

    READ_STOCK = "read_stock"
    CREATE_AUDIT = "create_audit"
    EDIT_AUDIT_ITEMS = "edit_audit_items"
    COMPLETE_AUDIT = "complete_audit"
    DELETE_AUDIT = "delete_audit"
    POST_TRANSACTION = "post_transaction"


# Minimum role per permission
PERMISSION_MIN_ROLE = {
    Permission.READ_STOCK: UserRole.STAFF,
    Permission.CREATE_AUDIT: UserRole.STAFF,
    Permission.EDIT_AUDIT_ITEMS: UserRole.STAFF,
    Permission.COMPLETE_AUDIT: UserRole.MANAGER,
    Permission.DELETE_AUDIT: UserRole.MANAGER,
    Permission.POST_TRANSACTION: UserRole.MANAGER,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The actor id from the ``sub`` claim, kept as a string.
        email: The user's email address.
        role: The user's role (owner/manager/staff).
    """

    def __init__(self, user_id: str, email: str, role: UserRole):
        self.user_id = user_id
        self.email = email
        self.role = role

    def can(self, permission: Permission) -> bool:
        required = PERMISSION_MIN_ROLE[permission]
        return ROLE_HIERARCHY.get(self.role, 0) >= ROLE_HIERARCHY[required]


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated user from the Authorization header."""
    payload = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    email = payload.get("email")
    role = payload.get("role")

    if user_id is None or email is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        user_role = UserRole(role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in token",
        )

    return TokenData(user_id=str(user_id), email=email, role=user_role)


CurrentUser = Annotated[TokenData, Depends(get_current_user)]


def require_permission(permission: Permission):
    """Dependency to require the role level a permission needs."""

    async def permission_checker(current_user: CurrentUser) -> TokenData:
        if not current_user.can(permission):
            required = PERMISSION_MIN_ROLE[permission]
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {required.value} or higher to {permission.value}",
            )
        return current_user

    return permission_checker


CanReadStock = Annotated[TokenData, Depends(require_permission(Permission.READ_STOCK))]
CanCreateAudit = Annotated[TokenData, Depends(require_permission(Permission.CREATE_AUDIT))]
CanEditAuditItems = Annotated[TokenData, Depends(require_permission(Permission.EDIT_AUDIT_ITEMS))]
CanCompleteAudit = Annotated[TokenData, Depends(require_permission(Permission.COMPLETE_AUDIT))]
CanDeleteAudit = Annotated[TokenData, Depends(require_permission(Permission.DELETE_AUDIT))]
CanPostTransaction = Annotated[TokenData, Depends(require_permission(Permission.POST_TRANSACTION))]
