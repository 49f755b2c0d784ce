import asyncio

import pytest

from controllers.attendance_session_controller import SessionRegistry
from models.attendance_models import AttendanceStatus, EntityKind, SaveStatus, SessionCreate
from utils.errors import NotFound

from conftest import TEST_DATE, coach_item, fixed_clock, make_user, student_item


@pytest.fixture
def loaded_backend(backend):
    backend.students = [student_item("s-1", "Asha Rao"), student_item("s-2", "Bala Murali")]
    backend.coaches = [coach_item("c-1", "Vikram Singh")]
    return backend


def make_registry(client_factory, idle_timeout):
    return SessionRegistry(client_factory, idle_timeout=idle_timeout, clock=fixed_clock, status_reset_after=0.05)


async def test_idle_session_is_closed(client_factory, loaded_backend):
    registry = make_registry(client_factory, idle_timeout=0.05)
    user = make_user()
    session = await registry.create(user, SessionCreate(kind=EntityKind.STUDENT, date=TEST_DATE))

    await asyncio.sleep(0.1)

    with pytest.raises(NotFound):
        await registry.get(session.id, user)
    assert registry.sessions == {}
    assert session.client.client.is_closed


async def test_used_session_stays_open(client_factory, loaded_backend):
    registry = make_registry(client_factory, idle_timeout=0.1)
    user = make_user()
    session = await registry.create(user, SessionCreate(kind=EntityKind.STUDENT, date=TEST_DATE))

    for _ in range(3):
        await asyncio.sleep(0.05)
        assert await registry.get(session.id, user) is session

    assert not session.client.client.is_closed
    await registry.close_all()


async def test_opening_a_page_sweeps_abandoned_ones(client_factory, loaded_backend):
    registry = make_registry(client_factory, idle_timeout=0.05)
    user = make_user()
    abandoned = await registry.create(user, SessionCreate(kind=EntityKind.STUDENT, date=TEST_DATE))

    await asyncio.sleep(0.1)
    fresh = await registry.create(user, SessionCreate(kind=EntityKind.COACH, date=TEST_DATE))

    assert list(registry.sessions) == [fresh.id]
    assert abandoned.client.client.is_closed
    await registry.close_all()


async def test_zero_timeout_keeps_sessions(client_factory, loaded_backend):
    registry = make_registry(client_factory, idle_timeout=0)
    user = make_user()
    session = await registry.create(user, SessionCreate(kind=EntityKind.STUDENT, date=TEST_DATE))

    await asyncio.sleep(0.05)

    assert await registry.get(session.id, user) is session
    await registry.close_all()


async def test_coach_mark_landing_after_date_change(client_factory, loaded_backend):
    registry = make_registry(client_factory, idle_timeout=0)
    user = make_user()
    session = await registry.create(user, SessionCreate(kind=EntityKind.COACH, date=TEST_DATE))
    gate = asyncio.Event()

    async def hold(body):
        await gate.wait()

    loaded_backend.mark_hook = hold
    pending = asyncio.create_task(session.mark("c-1_2024-03-01", AttendanceStatus.PRESENT))
    await asyncio.sleep(0.01)
    await session.change_date("2024-03-02")
    gate.set()
    outcome = await pending

    assert outcome.save_status == SaveStatus.SUCCESS
    assert len(loaded_backend.marks) == 1
    assert session.date == "2024-03-02"
    assert session.store.get("c-1_2024-03-02").status == AttendanceStatus.NOT_MARKED
    assert "c-1_2024-03-01" not in session.engine._locks
    await registry.close_all()
