"""Authentication and authorization dependencies for the IAFA ledger.

Provides:
- Password hashing (bcrypt)
- JWT creation / validation
- ``get_current_user()`` dependency
- ``require_permission()`` dependency factory
- Audit-log helper
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.config import settings
from iafa.database import get_db
from iafa.exceptions import StorageError
from iafa.rbac import get_role_permissions

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain: str, hashed: str) -> bool:
    """Compare a plain-text password against a bcrypt hash."""
    return _pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    """Return the bcrypt hash of a plain-text password."""
    return _pwd_context.hash(plain)


# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------


def create_access_token(data: dict[str, Any]) -> str:
    """Create a signed JWT containing *sub* (username), *role*, and *exp*."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    to_encode.update({"exp": expire})

    # UUIDs are not JSON-serialisable
    if "user_id" in to_encode and not isinstance(to_encode["user_id"], str):
        to_encode["user_id"] = str(to_encode["user_id"])

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

# ---------------------------------------------------------------------------
# Current-user dependency
# ---------------------------------------------------------------------------


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Decode the JWT, look up the user in the ``users`` table, and return a
    dict describing the authenticated user.

    Raises ``HTTPException(401)`` when the token is invalid or the user cannot
    be found.
    """
    from iafa.models.user import User

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        username: str | None = payload.get("sub")
        if username is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    result = await db.execute(select(User).where(User.username == username))
    user: User | None = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    user_dict = {
        "user_id": user.id,
        "username": user.username,
        "role": user.role,
        "display_name": user.display_name,
        "email": user.email,
    }
    request.state.user = user_dict
    return user_dict


# ---------------------------------------------------------------------------
# Permission-checking dependency factory
# ---------------------------------------------------------------------------


def require_permission(*permissions: str):
    """Return a FastAPI dependency that ensures the authenticated user has
    ALL of the specified permissions.

    Usage::

        @router.post("/credit", status_code=201)
        async def create_credit(
            body: CreditCreate,
            db: AsyncSession = Depends(get_db),
            user: dict = Depends(require_permission("transactions.create")),
        ):
            ...
    """
    required = set(permissions)

    async def _check_permission(
        current_user: dict[str, Any] = Depends(get_current_user),
    ) -> dict[str, Any]:
        missing = required - get_role_permissions(current_user["role"])
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}.",
            )
        return current_user

    return _check_permission


def actor_id(user: dict[str, Any] | None) -> uuid.UUID | None:
    """Return the acting user's id as a UUID (or ``None`` for system jobs)."""
    if not user or not user.get("user_id"):
        return None
    uid = user["user_id"]
    return uid if isinstance(uid, uuid.UUID) else uuid.UUID(str(uid))


# ---------------------------------------------------------------------------
# Audit-log helper
# ---------------------------------------------------------------------------


async def write_audit_log(
    db: AsyncSession,
    user: dict[str, Any] | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    """Add an ``audit_log`` row to the caller's unit of work.

    The row commits or rolls back together with the mutation it describes.
    """
    from iafa.models.audit import AuditLog

    if details is not None:
        # Dates, Decimals and UUIDs are stored as strings.
        details = json.loads(json.dumps(details, default=str))

    entry = AuditLog(
        user_id=actor_id(user),
        username=user.get("username") if user else "system",
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
    )
    db.add(entry)
    try:
        await db.flush()
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not write audit entry for {action}") from exc


def resolve_override(user: dict[str, Any], requested: bool) -> bool:
    """Turn a client's ``admin_override`` request into a server-side decision.

    The flag is honoured only for users holding the override capability;
    asking for it without the capability is a 403.
    """
    from iafa.rbac import OVERRIDE_PERIOD_LOCK

    if not requested:
        return False
    if OVERRIDE_PERIOD_LOCK not in get_role_permissions(user["role"]):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permissions: {OVERRIDE_PERIOD_LOCK}.",
        )
    return True
