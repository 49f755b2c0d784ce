import json
from datetime import datetime, timedelta

import httpx
import jwt
import pytest

from models.attendance_models import SessionUser
from utils.api_client import AttendanceAPIClient
from utils.config import ALGORITHM, SECRET_KEY

BACKEND_URL = "http://backend.test"
TEST_DATE = "2024-03-01"


def fixed_clock():
    return datetime(2024, 3, 1, 9, 30)


def make_token(role="branch_manager", user_id="bm-1", full_name="Ravi Kumar", email="ravi@example.com", expires_in=3600):
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "full_name": full_name,
        "exp": datetime.utcnow() + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def make_user(role="branch_manager", user_id="bm-1", full_name="Ravi Kumar", email="ravi@example.com"):
    return SessionUser(
        id=user_id,
        email=email,
        full_name=full_name,
        role=role,
        token=make_token(role, user_id, full_name, email),
    )


def student_item(student_id, name, course_id="course-1", branch_id="branch-1", attendance=None, **extra):
    item = {
        "student_id": student_id,
        "student_name": name,
        "course_id": course_id,
        "course_name": "Karate Basics",
        "branch_id": branch_id,
        "branch_name": "Madhapur",
        "email": f"{student_id}@example.com",
        "phone": "9876543210",
    }
    if attendance is not None:
        item["attendance"] = attendance
    item.update(extra)
    return item


def coach_item(coach_id, name, branch_id="branch-1", attendance=None, **extra):
    item = {
        "coach_id": coach_id,
        "id": coach_id,
        "coach_name": name,
        "full_name": name,
        "email": f"{coach_id}@example.com",
        "phone": "9123456780",
        "branch_id": branch_id,
        "branch_name": "Madhapur",
        "expertise": ["Karate", "Kung Fu"],
        "attendance": attendance or {"status": "not_marked", "check_in_time": None, "check_out_time": None, "notes": ""},
    }
    item.update(extra)
    return item


class FakeBackend:
    """In-memory stand-in for the Marshalats attendance endpoints"""

    def __init__(self):
        self.students = []
        self.coaches = []
        self.branches = []
        self.stats = None
        self.stats_status = 200
        self.list_status = 200
        self.fail_marks_for = {}
        self.marks = []
        self.requests = []
        self.mark_hook = None

    def transport(self):
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path == "/api/attendance/students":
            if self.list_status != 200:
                return httpx.Response(self.list_status, text="backend failure")
            return httpx.Response(200, json={"students": self.students, "date": request.url.params.get("date")})
        if request.method == "GET" and path == "/api/attendance/coaches":
            if self.list_status != 200:
                return httpx.Response(self.list_status, text="backend failure")
            return httpx.Response(200, json={"coaches": self.coaches, "date": request.url.params.get("date")})
        if request.method == "GET" and path == "/api/attendance/stats":
            if self.stats is None or self.stats_status != 200:
                return httpx.Response(self.stats_status if self.stats_status != 200 else 500, json={"detail": "stats unavailable"})
            return httpx.Response(200, json=self.stats)
        if request.method == "GET" and path == "/api/branches":
            return httpx.Response(200, json={"branches": self.branches})
        if request.method == "POST" and path == "/api/attendance/mark":
            body = json.loads(request.content)
            if self.mark_hook is not None:
                await self.mark_hook(body)
            self.marks.append(body)
            failure = self.fail_marks_for.get(body["user_id"])
            if failure:
                return httpx.Response(failure, json={"detail": "Failed to mark attendance"})
            return httpx.Response(200, json={"message": "Attendance marked successfully", "attendance_id": "att-1", "action": "created"})
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client_factory(backend):
    def factory(token):
        return AttendanceAPIClient(token=token, base_url=BACKEND_URL, transport=backend.transport())
    return factory


@pytest.fixture
async def api_client(client_factory):
    client = client_factory(make_token())
    yield client
    await client.aclose()
