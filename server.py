from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes import (
    attendance_session_router,
    attendance_overview_router,
)
from routes.attendance_session_routes import get_session_registry
from utils.config import API_BASE_URL, LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.info(f"Attendance sync service using backend {API_BASE_URL}")
    yield
    # Drop every open page session and its backend client
    await get_session_registry().close_all()


app = FastAPI(
    title="Marshalats Attendance Sync API",
    description="Attendance marking, reconciliation and bulk save for the Marshalats dashboards",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(attendance_session_router, prefix="/api/attendance-sessions", tags=["Attendance Sessions"])
app.include_router(attendance_overview_router, prefix="/api/attendance-overview", tags=["Attendance Overview"])

@app.get("/")
async def root():
    return {"message": "Marshalats Attendance Sync API is running"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat() + "Z"}
