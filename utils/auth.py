from typing import Optional

import jwt
from fastapi import Header, HTTPException

from models.attendance_models import EntityKind, SessionUser
from utils.config import ALGORITHM, SECRET_KEY
from utils.errors import AuthRequired, PermissionDenied

# Roles allowed to work with each attendance screen, as guarded by the backend routes
ATTENDANCE_ROLES = {
    EntityKind.STUDENT: {"superadmin", "super_admin", "coach_admin", "coach", "branch_manager"},
    EntityKind.COACH: {"superadmin", "super_admin", "coach_admin", "branch_manager"},
}

ROLE_LABELS = {
    "superadmin": "super admin",
    "super_admin": "super admin",
    "coach_admin": "coach admin",
    "branch_manager": "branch manager",
    "coach": "coach",
}


def decode_session_token(token: str) -> SessionUser:
    """Verify a backend-issued JWT and build the signed-in user"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthRequired("Session expired, please log in again")
    except jwt.InvalidTokenError:
        raise AuthRequired()

    user_id = payload.get("sub") or payload.get("id") or payload.get("user_id")
    if not user_id:
        raise AuthRequired()

    return SessionUser(
        id=str(user_id),
        email=payload.get("email") or "",
        full_name=payload.get("full_name") or payload.get("name") or "",
        role=(payload.get("role") or "").lower(),
        token=token,
    )


def require_attendance_role(user: SessionUser, kind: EntityKind):
    if user.role not in ATTENDANCE_ROLES[kind]:
        raise PermissionDenied(f"Access Denied: {kind.value} attendance is not available for your role")


def actor_note(user: SessionUser) -> str:
    """Audit phrase stored with every mark"""
    actor = user.full_name or user.email or user.id
    label = ROLE_LABELS.get(user.role)
    return f"Marked by {label}: {actor}" if label else f"Marked by {actor}"


async def get_session_user(authorization: Optional[str] = Header(None)) -> SessionUser:
    """FastAPI dependency resolving the bearer token of the request"""
    try:
        if not authorization:
            raise AuthRequired()
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthRequired()
        return decode_session_token(token.strip())
    except AuthRequired as e:
        raise HTTPException(status_code=e.status_code, detail=e.message, headers={"WWW-Authenticate": "Bearer"})
