from routes.attendance_session_routes import router as attendance_session_router
from routes.attendance_overview_routes import router as attendance_overview_router

__all__ = ["attendance_session_router", "attendance_overview_router"]
