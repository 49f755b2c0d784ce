from fastapi import APIRouter, Depends, Query, Path
from typing import Optional

from controllers.attendance_session_controller import AttendanceSessionController, SessionRegistry
from models.attendance_models import (
    AttendanceStatus, DateChange, MarkRequest, SessionCreate, SessionUser
)
from utils.auth import get_session_user

router = APIRouter()

_registry = SessionRegistry()


def get_session_registry() -> SessionRegistry:
    """Registry of open attendance pages for this process"""
    return _registry


@router.post("")
async def create_attendance_session(
    request: SessionCreate,
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Open a student or coach attendance page for a date (defaults to today)"""
    return await AttendanceSessionController.create_session(request, current_user, registry)

@router.get("/{session_id}")
async def get_attendance_session(
    session_id: str = Path(...),
    q: Optional[str] = Query(None, description="Free-text search on name, email, course, branch or expertise"),
    branch_id: Optional[str] = Query(None),
    course_id: Optional[str] = Query(None),
    status: Optional[AttendanceStatus] = Query(None),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Get the records, stats and save statuses of an attendance page"""
    return await AttendanceSessionController.get_session(
        session_id, current_user, registry, q, branch_id, course_id, status
    )

@router.post("/{session_id}/refresh")
async def refresh_attendance_session(
    session_id: str = Path(...),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Re-fetch the records for the current date"""
    return await AttendanceSessionController.refresh_session(session_id, current_user, registry)

@router.put("/{session_id}/date")
async def change_attendance_session_date(
    request: DateChange,
    session_id: str = Path(...),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Load the records for another date"""
    return await AttendanceSessionController.change_date(session_id, request, current_user, registry)

@router.post("/{session_id}/records/{record_id}/mark")
async def mark_attendance_record(
    request: MarkRequest,
    session_id: str = Path(...),
    record_id: str = Path(...),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Mark a row present, absent or late"""
    return await AttendanceSessionController.mark_attendance(
        session_id, record_id, request, current_user, registry
    )

@router.post("/{session_id}/save")
async def save_attendance_session(
    session_id: str = Path(...),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Save all unsaved marks of the page"""
    return await AttendanceSessionController.save_all(session_id, current_user, registry)

@router.get("/{session_id}/export")
async def export_attendance_session(
    session_id: str = Path(...),
    q: Optional[str] = Query(None),
    branch_id: Optional[str] = Query(None),
    course_id: Optional[str] = Query(None),
    status: Optional[AttendanceStatus] = Query(None),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Export the currently shown records as CSV"""
    return await AttendanceSessionController.export_session(
        session_id, current_user, registry, q, branch_id, course_id, status
    )

@router.delete("/{session_id}")
async def close_attendance_session(
    session_id: str = Path(...),
    current_user: SessionUser = Depends(get_session_user),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Close an attendance page and drop its state"""
    return await AttendanceSessionController.close_session(session_id, current_user, registry)
