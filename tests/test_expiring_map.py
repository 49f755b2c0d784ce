import asyncio

from models.attendance_models import SaveStatus
from utils.expiring_map import ExpiringMap


async def test_value_reverts_to_rest_value():
    statuses = ExpiringMap(rest_value=SaveStatus.IDLE)
    statuses.set("c-1", SaveStatus.SUCCESS, 0.02)
    assert statuses.get("c-1") == SaveStatus.SUCCESS
    assert statuses.pending("c-1")

    await asyncio.sleep(0.06)

    assert statuses.get("c-1") == SaveStatus.IDLE
    assert not statuses.pending("c-1")


async def test_value_is_removed_without_rest_value():
    banners = ExpiringMap()
    banners.set("success", "Saved", 0.02)
    assert "success" in banners

    await asyncio.sleep(0.06)

    assert "success" not in banners
    assert len(banners) == 0


async def test_new_value_cancels_pending_revert():
    statuses = ExpiringMap(rest_value=SaveStatus.IDLE)
    statuses.set("c-1", SaveStatus.SUCCESS, 0.03)
    await asyncio.sleep(0.02)
    statuses.set("c-1", SaveStatus.SAVING)

    await asyncio.sleep(0.05)

    # The first timer must not clear the newer value
    assert statuses.get("c-1") == SaveStatus.SAVING
    assert not statuses.pending("c-1")


async def test_reset_restarts_the_timer():
    banners = ExpiringMap()
    banners.set("error", "first", 0.03)
    await asyncio.sleep(0.02)
    banners.set("error", "second", 0.06)
    await asyncio.sleep(0.03)
    assert banners.get("error") == "second"

    await asyncio.sleep(0.06)
    assert "error" not in banners


async def test_expire_now_and_later():
    statuses = ExpiringMap(rest_value=SaveStatus.IDLE)
    statuses.set("a", SaveStatus.ERROR)
    statuses.set("b", SaveStatus.ERROR)

    statuses.expire("a")
    statuses.expire("b", 0.02)

    assert statuses.get("a") == SaveStatus.IDLE
    assert statuses.get("b") == SaveStatus.ERROR
    await asyncio.sleep(0.05)
    assert statuses.get("b") == SaveStatus.IDLE


async def test_clear_cancels_timers():
    banners = ExpiringMap()
    banners.set("success", "Saved", 0.02)
    banners.clear()
    assert not banners.pending("success")
    banners.set("success", "Saved again")

    await asyncio.sleep(0.05)
    assert banners.get("success") == "Saved again"


def test_without_event_loop_expiry_is_immediate():
    statuses = ExpiringMap(rest_value=SaveStatus.IDLE)
    statuses.set("c-1", SaveStatus.SUCCESS, 5)
    assert statuses.get("c-1") == SaveStatus.IDLE
    assert statuses.snapshot() == {"c-1": SaveStatus.IDLE}
