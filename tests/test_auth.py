import jwt
import pytest
from fastapi import HTTPException

from models.attendance_models import EntityKind
from utils.auth import actor_note, decode_session_token, get_session_user, require_attendance_role
from utils.config import ALGORITHM, SECRET_KEY
from utils.errors import AuthRequired, PermissionDenied

from conftest import make_token, make_user


def test_decode_valid_token():
    token = make_token(role="coach", user_id="coach-7", full_name="Vikram Singh", email="vikram@example.com")
    user = decode_session_token(token)
    assert user.id == "coach-7"
    assert user.role == "coach"
    assert user.full_name == "Vikram Singh"
    assert user.email == "vikram@example.com"
    assert user.token == token


def test_expired_token():
    with pytest.raises(AuthRequired) as caught:
        decode_session_token(make_token(expires_in=-60))
    assert caught.value.message == "Session expired, please log in again"


def test_token_signed_with_another_key():
    token = jwt.encode({"sub": "bm-1", "role": "branch_manager"}, "some-other-secret", algorithm="HS256")
    with pytest.raises(AuthRequired):
        decode_session_token(token)


def test_token_without_subject():
    token = jwt.encode({"role": "coach"}, SECRET_KEY, algorithm=ALGORITHM)
    with pytest.raises(AuthRequired):
        decode_session_token(token)


@pytest.mark.parametrize("role, kind, allowed", [
    ("superadmin", EntityKind.COACH, True),
    ("super_admin", EntityKind.STUDENT, True),
    ("coach_admin", EntityKind.COACH, True),
    ("branch_manager", EntityKind.COACH, True),
    ("coach", EntityKind.STUDENT, True),
    ("coach", EntityKind.COACH, False),
    ("student", EntityKind.STUDENT, False),
])
def test_role_access(role, kind, allowed):
    user = make_user(role=role)
    if allowed:
        require_attendance_role(user, kind)
    else:
        with pytest.raises(PermissionDenied):
            require_attendance_role(user, kind)


def test_actor_note():
    assert actor_note(make_user(role="coach", full_name="Vikram Singh")) == "Marked by coach: Vikram Singh"
    assert actor_note(make_user(role="superadmin", full_name="")) == "Marked by super admin: ravi@example.com"
    assert actor_note(make_user(role="auditor", full_name="Zed")) == "Marked by Zed"


async def test_missing_or_malformed_header_is_401():
    for header in (None, "", "Token abc", "Bearer "):
        with pytest.raises(HTTPException) as caught:
            await get_session_user(header)
        assert caught.value.status_code == 401
        assert caught.value.headers == {"WWW-Authenticate": "Bearer"}


async def test_bearer_header_resolves_user():
    user = await get_session_user(f"Bearer {make_token(user_id='bm-9')}")
    assert user.id == "bm-9"
