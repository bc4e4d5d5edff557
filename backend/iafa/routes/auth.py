"""Authentication routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.database import get_db
from iafa.middleware.auth import (
    create_access_token,
    get_current_user,
    verify_password,
    write_audit_log,
)
from iafa.rbac import get_role_permissions

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


def _user_out(user: dict) -> dict:
    return {
        "id": str(user["user_id"]),
        "username": user["username"],
        "display_name": user.get("display_name") or user["username"],
        "email": user.get("email"),
        "role": user["role"],
        "permissions": sorted(get_role_permissions(user["role"])),
    }


@router.post("/login")
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    from iafa.models.user import User

    stmt = select(User).where(User.username == body.username, User.is_active == True)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    user_dict = {
        "user_id": user.id,
        "username": user.username,
        "role": user.role,
        "display_name": user.display_name,
        "email": user.email,
    }
    token = create_access_token({"sub": user.username, "role": user.role, "user_id": user.id})

    await write_audit_log(
        db,
        user_dict,
        "auth.login",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": user.username},
        ip_address=request.client.host if request.client else None,
    )
    await db.commit()

    return {
        "success": True,
        "data": {
            "access_token": token,
            "token_type": "bearer",
            "user": _user_out(user_dict),
        },
    }


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return {"success": True, "data": _user_out(user)}
