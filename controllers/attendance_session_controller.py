from fastapi import HTTPException
from fastapi.responses import Response
from typing import Callable, Dict, List, Optional
from datetime import datetime
import logging
import time
import uuid

from models.attendance_models import (
    AttendanceStatus, Banner, BulkSaveResult, DateChange, EntityKind, MarkOutcome,
    MarkRequest, SaveStatus, SessionCreate, SessionUser, SessionView, SyncPolicy
)
from controllers.sync_engine import AttendanceSyncEngine, DEFAULT_POLICIES
from utils.api_client import AttendanceAPIClient
from utils.attendance_store import AttendanceStore
from utils.auth import require_attendance_role
from utils.config import ERROR_BANNER_SECONDS, SESSION_IDLE_TIMEOUT_SECONDS, SUCCESS_BANNER_SECONDS
from utils.csv_export import export_attendance_csv
from utils.errors import (
    AttendanceError, AuthRequired, NotFound, PartialBulkFailure, PermissionDenied
)
from utils.expiring_map import ExpiringMap
from utils.normalizer import branch_name_lookup, normalize_batch, validate_date

# Errors that stay on screen until the user acts again
PERSISTENT_ERRORS = (AuthRequired, PermissionDenied, NotFound)


class AttendanceSession:
    """State of one open attendance page: records, save statuses and banners"""

    def __init__(
        self,
        session_id: str,
        user: SessionUser,
        kind: EntityKind,
        date: str,
        client: AttendanceAPIClient,
        policy: Optional[SyncPolicy] = None,
        clock: Callable[[], datetime] = datetime.now,
        status_reset_after: Optional[float] = None,
        bulk_concurrency: Optional[int] = None,
        success_banner_seconds: float = SUCCESS_BANNER_SECONDS,
        error_banner_seconds: float = ERROR_BANNER_SECONDS,
    ):
        self.id = session_id
        self.user = user
        self.kind = kind
        self.date = validate_date(date)
        self.client = client
        policy = SyncPolicy(policy) if policy else DEFAULT_POLICIES[kind]

        # Deferred pages drop the row flash entirely, immediate pages go back to idle
        rest_state = SaveStatus.IDLE if policy is SyncPolicy.IMMEDIATE else None
        self.store = AttendanceStore(kind, self.date, status_rest_state=rest_state, clock=clock)

        engine_options = {}
        if bulk_concurrency is not None:
            engine_options["bulk_concurrency"] = bulk_concurrency
        self.engine = AttendanceSyncEngine(
            self.store, client, user, policy=policy, status_reset_after=status_reset_after, **engine_options
        )
        self.success_banner_seconds = success_banner_seconds
        self.error_banner_seconds = error_banner_seconds
        self.banners = ExpiringMap()
        self.last_access = time.monotonic()

    def touch(self):
        self.last_access = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_access

    @property
    def policy(self) -> SyncPolicy:
        return self.engine.policy

    def notify_success(self, message: str):
        self.banners.set("success", Banner(level="success", message=message), self.success_banner_seconds)

    def notify_error(self, error: AttendanceError):
        persistent = isinstance(error, PERSISTENT_ERRORS)
        banner = Banner(
            level="error",
            message=error.message,
            category=error.category,
            retryable=error.retryable,
            persistent=persistent,
        )
        self.banners.set("error", banner, None if persistent else self.error_banner_seconds)

    async def _branch_names(self, items: List[dict]) -> Dict[str, str]:
        """Branch names for items that only carry a branch id"""
        missing = [
            item for item in items
            if isinstance(item, dict) and item.get("branch_id")
            and not item.get("branch_name") and not isinstance(item.get("branch"), dict)
        ]
        if not missing:
            return {}
        try:
            return branch_name_lookup(await self.client.get_branches())
        except AttendanceError as e:
            logging.warning(f"Branch names unavailable, continuing without them: {e.message}")
            return {}

    async def load(self, date: Optional[str] = None):
        """Fetch the full record set for ``date``, replacing the current one"""
        date = validate_date(date or self.date)
        self.banners.expire("error")
        logging.info(f"Fetching {self.kind.value} attendance data for date: {date}")
        try:
            items = await self.client.get_attendance(self.kind, date)
        except AttendanceError as e:
            # No partial render: an error leaves an empty table
            self.store.load([], date)
            self.engine.prune()
            self.date = date
            self.notify_error(e)
            raise

        branch_names = await self._branch_names(items)
        self.store.load(normalize_batch(items, self.kind, date, branch_names), date)
        self.engine.prune()
        self.date = date
        logging.info(f"Loaded {len(self.store)} {self.kind.value} attendance records for {date}")

    async def refresh(self):
        await self.load(self.date)

    async def change_date(self, date: str):
        await self.load(date)

    async def mark(self, record_id: str, status: AttendanceStatus) -> MarkOutcome:
        outcome = await self.engine.mark(record_id, status)
        if outcome.error:
            self.banners.set(
                "error",
                Banner(level="error", message=outcome.error, category="transient", retryable=True),
                self.error_banner_seconds,
            )
        elif self.policy is SyncPolicy.IMMEDIATE and outcome.save_status is SaveStatus.SUCCESS:
            self.notify_success(
                f"Attendance marked as {outcome.record.status.value} for {self.kind.value} {outcome.record.entity_name}"
            )
        return outcome

    async def save_all(self) -> BulkSaveResult:
        result = await self.engine.bulk_save()
        if result.success_count > 0:
            self.notify_success(f"Successfully saved {result.success_count} attendance records")
        if result.error_count > 0:
            self.notify_error(PartialBulkFailure(result.success_count, result.error_count))
        return result

    def view(
        self,
        query: Optional[str] = None,
        branch_id: Optional[str] = None,
        course_id: Optional[str] = None,
        status: Optional[AttendanceStatus] = None,
    ) -> SessionView:
        banners = [self.banners.get(key) for key in ("success", "error") if key in self.banners]
        return SessionView(
            session_id=self.id,
            kind=self.kind,
            policy=self.policy,
            date=self.date,
            records=self.store.filter(query, branch_id, course_id, status),
            total_records=len(self.store),
            stats=self.store.stats,
            save_status={key: value.value for key, value in self.store.save_status.snapshot().items()},
            has_unsaved_changes=self.store.has_unsaved_changes,
            is_saving=self.engine.is_saving,
            banners=banners,
        )

    def export_csv(self, query: Optional[str] = None, **filters):
        return export_attendance_csv(self.store.filter(query, **filters), self.kind, self.date)

    async def close(self):
        self.store.close()
        self.banners.clear()
        await self.client.aclose()


def default_client_factory(token: str) -> AttendanceAPIClient:
    return AttendanceAPIClient(token=token)


class SessionRegistry:
    """Open attendance sessions, one per page, private to the user who opened it"""

    def __init__(
        self,
        client_factory: Callable[[str], AttendanceAPIClient] = default_client_factory,
        idle_timeout: Optional[float] = SESSION_IDLE_TIMEOUT_SECONDS,
        **session_options,
    ):
        self.client_factory = client_factory
        self.idle_timeout = idle_timeout
        self.session_options = session_options
        self.sessions: Dict[str, AttendanceSession] = {}

    def today(self) -> str:
        clock = self.session_options.get("clock", datetime.now)
        return clock().strftime("%Y-%m-%d")

    async def evict_idle(self):
        """Close pages nobody has used for ``idle_timeout`` seconds"""
        if not self.idle_timeout:
            return
        idle = [
            session for session in self.sessions.values()
            if session.idle_for() > self.idle_timeout and not session.engine.is_saving
        ]
        for session in idle:
            self.sessions.pop(session.id, None)
            logging.info(f"Closing attendance session {session.id} after {session.idle_for():.0f}s idle")
            await session.close()

    async def create(self, user: SessionUser, request: SessionCreate) -> AttendanceSession:
        await self.evict_idle()
        require_attendance_role(user, request.kind)
        date = validate_date(request.date or self.today())
        session = AttendanceSession(
            str(uuid.uuid4()), user, request.kind, date,
            client=self.client_factory(user.token),
            policy=request.policy,
            **self.session_options,
        )
        try:
            await session.load()
        except AttendanceError:
            await session.close()
            raise
        session.touch()
        self.sessions[session.id] = session
        return session

    async def get(self, session_id: str, user: SessionUser) -> AttendanceSession:
        await self.evict_idle()
        session = self.sessions.get(session_id)
        if session is None or session.user.id != user.id:
            raise NotFound("Attendance session not found")
        session.touch()
        return session

    async def drop(self, session_id: str, user: SessionUser):
        session = await self.get(session_id, user)
        self.sessions.pop(session_id, None)
        await session.close()

    async def close_all(self):
        sessions = list(self.sessions.values())
        self.sessions.clear()
        for session in sessions:
            await session.close()


def _http_error(error: AttendanceError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


class AttendanceSessionController:
    @staticmethod
    async def create_session(request: SessionCreate, current_user: SessionUser, registry: SessionRegistry):
        """Open an attendance page for one kind and date"""
        try:
            session = await registry.create(current_user, request)
            return session.view().model_dump(mode="json")
        except AttendanceError as e:
            raise _http_error(e)

    @staticmethod
    async def get_session(
        session_id: str,
        current_user: SessionUser,
        registry: SessionRegistry,
        q: Optional[str] = None,
        branch_id: Optional[str] = None,
        course_id: Optional[str] = None,
        status: Optional[AttendanceStatus] = None,
    ):
        """Current records (filtered), stats, row statuses and banners"""
        try:
            session = await registry.get(session_id, current_user)
            return session.view(q, branch_id, course_id, status).model_dump(mode="json")
        except AttendanceError as e:
            raise _http_error(e)

    @staticmethod
    async def refresh_session(session_id: str, current_user: SessionUser, registry: SessionRegistry):
        try:
            session = await registry.get(session_id, current_user)
            await session.refresh()
            return session.view().model_dump(mode="json")
        except AttendanceError as e:
            raise _http_error(e)

    @staticmethod
    async def change_date(session_id: str, request: DateChange, current_user: SessionUser, registry: SessionRegistry):
        try:
            session = await registry.get(session_id, current_user)
            await session.change_date(request.date)
            return session.view().model_dump(mode="json")
        except AttendanceError as e:
            raise _http_error(e)

    @staticmethod
    async def mark_attendance(
        session_id: str,
        record_id: str,
        request: MarkRequest,
        current_user: SessionUser,
        registry: SessionRegistry,
    ):
        """Mark one row; the answer carries the row outcome and the page state"""
        try:
            session = await registry.get(session_id, current_user)
            outcome = await session.mark(record_id, request.status)
            return {
                "outcome": outcome.model_dump(mode="json"),
                "session": session.view().model_dump(mode="json"),
            }
        except AttendanceError as e:
            raise _http_error(e)

    @staticmethod
    async def save_all(session_id: str, current_user: SessionUser, registry: SessionRegistry):
        try:
            session = await registry.get(session_id, current_user)
            result = await session.save_all()
            return {
                "result": result.model_dump(mode="json"),
                "session": session.view().model_dump(mode="json"),
            }
        except AttendanceError as e:
            raise _http_error(e)

    @staticmethod
    async def export_session(
        session_id: str,
        current_user: SessionUser,
        registry: SessionRegistry,
        q: Optional[str] = None,
        branch_id: Optional[str] = None,
        course_id: Optional[str] = None,
        status: Optional[AttendanceStatus] = None,
    ):
        """CSV of the records currently shown"""
        try:
            session = await registry.get(session_id, current_user)
            filename, content = session.export_csv(q, branch_id=branch_id, course_id=course_id, status=status)
            return Response(
                content=content,
                media_type="text/csv",
                headers={"Content-Disposition": f'attachment; filename="{filename}"'},
            )
        except AttendanceError as e:
            raise _http_error(e)

    @staticmethod
    async def close_session(session_id: str, current_user: SessionUser, registry: SessionRegistry):
        try:
            await registry.drop(session_id, current_user)
            return {"message": "Attendance session closed", "session_id": session_id}
        except AttendanceError as e:
            raise _http_error(e)
