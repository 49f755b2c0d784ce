from fastapi import APIRouter, Depends, Query
from typing import Optional
from datetime import datetime

from controllers.attendance_overview_controller import AttendanceOverviewController
from controllers.attendance_session_controller import SessionRegistry
from models.attendance_models import SessionUser
from routes.attendance_session_routes import get_session_registry
from utils.auth import get_session_user

router = APIRouter()

@router.get("")
async def get_attendance_overview(
    date: Optional[str] = Query(None, description="Single date in ISO format (YYYY-MM-DD)"),
    branch_id: Optional[str] = Query(None),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Get student and coach attendance overview for a date"""
    return await AttendanceOverviewController.get_overview(
        date or datetime.now().strftime("%Y-%m-%d"),
        current_user,
        registry.client_factory(current_user.token),
        branch_id,
    )
