from fastapi import HTTPException
from typing import Optional
import logging

from models.attendance_models import EntityKind, OverviewStats, SessionUser
from utils.api_client import AttendanceAPIClient
from utils.attendance_stats import compute_overview
from utils.auth import require_attendance_role
from utils.errors import AttendanceError, AuthRequired, PermissionDenied
from utils.normalizer import normalize_batch, normalize_overview_stats, validate_date


async def load_overview(client: AttendanceAPIClient, date: str, branch_id: Optional[str] = None) -> OverviewStats:
    """Overview cards from the stats endpoint, or derived from the entity lists"""
    try:
        stats = await client.get_stats(date, branch_id)
        return normalize_overview_stats(stats)
    except (AuthRequired, PermissionDenied):
        raise
    except AttendanceError as e:
        logging.warning(f"Stats endpoint failed, deriving overview from attendance lists: {e.message}")

    lists = {}
    for kind in (EntityKind.STUDENT, EntityKind.COACH):
        try:
            items = await client.get_attendance(kind, date, branch_id)
        except (AuthRequired, PermissionDenied):
            raise
        except AttendanceError as e:
            logging.warning(f"{kind.label} attendance unavailable for overview: {e.message}")
            items = []
        lists[kind] = normalize_batch(items, kind, date)

    return compute_overview(lists[EntityKind.STUDENT], lists[EntityKind.COACH])


class AttendanceOverviewController:
    @staticmethod
    async def get_overview(
        date: str,
        current_user: SessionUser,
        client: AttendanceAPIClient,
        branch_id: Optional[str] = None,
    ):
        """Student and coach attendance summary for one date"""
        try:
            require_attendance_role(current_user, EntityKind.COACH)
            date = validate_date(date)
            overview = await load_overview(client, date, branch_id)
            return {"date": date, **overview.model_dump(mode="json")}
        except AttendanceError as e:
            raise HTTPException(status_code=e.status_code, detail=e.message)
        finally:
            await client.aclose()
