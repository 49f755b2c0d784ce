import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from models.attendance_models import (
    AttendanceMarkRequest, AttendanceRecord, AttendanceStatus, BulkSaveResult,
    EntityKind, MarkOutcome, SaveStatus, SessionUser, SyncPolicy
)
from utils.api_client import AttendanceAPIClient
from utils.attendance_store import AttendanceStore
from utils.auth import actor_note
from utils.config import (
    BULK_SAVE_CONCURRENCY, COACH_ATTENDANCE_TIME,
    DEFERRED_STATUS_RESET_SECONDS, IMMEDIATE_STATUS_RESET_SECONDS
)
from utils.errors import AttendanceError

DEFAULT_POLICIES = {
    EntityKind.COACH: SyncPolicy.IMMEDIATE,
    EntityKind.STUDENT: SyncPolicy.DEFERRED,
}


def utc_iso(moment: datetime) -> str:
    """UTC ISO timestamp with a Z suffix; naive values are read as local time"""
    return moment.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


class AttendanceSyncEngine:
    """Writes local attendance marks back to the backend.

    Immediate policy: every mark is written on the spot and the row's save
    status follows the write (saving, then success or error, then idle).
    A failed write keeps the local mark.

    Deferred policy: marks stay local and raise the unsaved-changes flag until
    ``bulk_save`` writes every marked record.
    """

    def __init__(
        self,
        store: AttendanceStore,
        client: AttendanceAPIClient,
        user: SessionUser,
        policy: Optional[SyncPolicy] = None,
        status_reset_after: Optional[float] = None,
        bulk_concurrency: int = BULK_SAVE_CONCURRENCY,
        coach_attendance_time: str = COACH_ATTENDANCE_TIME,
    ):
        self.store = store
        self.client = client
        self.user = user
        self.policy = SyncPolicy(policy) if policy else DEFAULT_POLICIES[store.kind]
        if status_reset_after is None:
            status_reset_after = (
                IMMEDIATE_STATUS_RESET_SECONDS if self.policy is SyncPolicy.IMMEDIATE
                else DEFERRED_STATUS_RESET_SECONDS
            )
        self.status_reset_after = status_reset_after
        self.bulk_concurrency = max(1, bulk_concurrency)
        self.coach_attendance_time = coach_attendance_time
        self.is_saving = False
        self._locks: Dict[str, asyncio.Lock] = {}
        self._generations: Dict[str, int] = {}

    def build_payload(self, record: AttendanceRecord, status: AttendanceStatus) -> AttendanceMarkRequest:
        now = self.store.clock()
        if record.entity_kind is EntityKind.COACH:
            attendance_date = f"{record.date}T{self.coach_attendance_time}Z"
        else:
            attendance_date = f"{record.date}T{now.strftime('%H:%M:%S')}"
        return AttendanceMarkRequest(
            user_id=record.entity_id,
            user_type=record.entity_kind,
            course_id=record.course_id if record.entity_kind is EntityKind.STUDENT else None,
            branch_id=record.branch_id,
            attendance_date=attendance_date,
            status=status,
            check_in_time=None if status is AttendanceStatus.ABSENT else utc_iso(now),
            check_out_time=None,
            notes=actor_note(self.user),
        )

    async def mark(self, record_id: str, status: AttendanceStatus) -> MarkOutcome:
        if self.policy is SyncPolicy.IMMEDIATE:
            return await self._mark_immediately(record_id, status)
        return self._mark_locally(record_id, status)

    def _mark_locally(self, record_id: str, status: AttendanceStatus) -> MarkOutcome:
        record = self.store.apply_mark(record_id, status)
        self.store.mark_dirty()
        self.store.set_save_status(record_id, SaveStatus.SUCCESS, self.status_reset_after)
        logging.info(f"Attendance for {record.entity_name} set to {record.status.value} locally, waiting for save")
        return MarkOutcome(record=record, save_status=SaveStatus.SUCCESS)

    async def _mark_immediately(self, record_id: str, status: AttendanceStatus) -> MarkOutcome:
        record = self.store.apply_mark(record_id, status)
        status = record.status
        self.store.set_save_status(record_id, SaveStatus.SAVING)
        payload = self.build_payload(record, status)
        generation = self._generations.get(record_id, 0) + 1
        self._generations[record_id] = generation

        # Writes for the same record go out one at a time, in mark order
        lock = self._locks.setdefault(record_id, asyncio.Lock())
        async with lock:
            try:
                await self.client.mark_attendance(payload)
            except AttendanceError as e:
                logging.warning(f"Failed to save {record.entity_kind.value} attendance for {record.entity_name}: {e.message}")
                if record_id not in self.store:
                    self.prune()
                    return MarkOutcome(record=record, save_status=SaveStatus.ERROR, error=e.message)
                if self._is_latest(record_id, generation):
                    self.store.set_save_status(record_id, SaveStatus.ERROR, self.status_reset_after)
                return MarkOutcome(record=self.store.get(record_id), save_status=SaveStatus.ERROR, error=e.message)

        if record_id not in self.store:
            # The page moved to another record set while the write was in flight
            logging.info(f"Saved {record.entity_kind.value} attendance for {record.entity_name} after the page was reloaded")
            self.prune()
            return MarkOutcome(record=record, save_status=SaveStatus.SUCCESS)

        if not self._is_latest(record_id, generation):
            # A newer mark on this row owns the local state and status
            return MarkOutcome(record=self.store.get(record_id), save_status=self.store.get_save_status(record_id))

        record = self.store.merge_confirmed(
            record_id,
            status=status,
            check_in_time=record.check_in_time,
            notes=payload.notes,
        )
        self.store.set_save_status(record_id, SaveStatus.SUCCESS, self.status_reset_after)
        logging.info(f"Saved {record.entity_kind.value} attendance for {record.entity_name}: {status.value}")
        return MarkOutcome(record=record, save_status=SaveStatus.SUCCESS)

    def _is_latest(self, record_id: str, generation: int) -> bool:
        return self._generations.get(record_id) == generation

    def prune(self):
        """Forget per-row write state of records that are no longer loaded"""
        for record_id in list(self._locks):
            if record_id not in self.store and not self._locks[record_id].locked():
                del self._locks[record_id]
        for record_id in list(self._generations):
            if record_id not in self.store and record_id not in self._locks:
                del self._generations[record_id]

    async def _write_record(self, record: AttendanceRecord) -> bool:
        payload = self.build_payload(record, record.status)
        logging.info(f"Saving attendance for {record.entity_name} with status: {record.status.value}")
        try:
            await self.client.mark_attendance(payload)
        except AttendanceError as e:
            logging.warning(f"Failed to save attendance for {record.entity_name}: {e.message}")
            if record.id in self.store:
                self.store.set_save_status(record.id, SaveStatus.ERROR, self.status_reset_after)
            return False
        if record.id in self.store:
            self.store.merge_confirmed(record.id, notes=payload.notes)
        return True

    async def bulk_save(self) -> BulkSaveResult:
        """Write every marked record and report how many writes succeeded"""
        if self.is_saving:
            logging.info("Bulk save already in progress, ignoring")
            return BulkSaveResult(skipped=True, skip_reason="in_progress")
        if not self.store.has_unsaved_changes:
            return BulkSaveResult(skipped=True, skip_reason="no_changes")

        self.is_saving = True
        try:
            seen_changes = self.store.change_count
            records = self.store.dirty_records()
            logging.info(f"Starting bulk save of {len(records)} attendance records")
            result = BulkSaveResult()

            if self.bulk_concurrency == 1:
                outcomes = []
                for record in records:
                    outcomes.append(await self._write_record(record))
            else:
                semaphore = asyncio.Semaphore(self.bulk_concurrency)

                async def bounded(record):
                    async with semaphore:
                        return await self._write_record(record)

                outcomes = await asyncio.gather(*(bounded(record) for record in records))

            for record, saved in zip(records, outcomes):
                if saved:
                    result.success_count += 1
                else:
                    result.error_count += 1
                    result.failed_ids.append(record.id)

            if result.success_count > 0 and not self.store.mark_clean(seen_changes):
                logging.info("Attendance changed during bulk save, keeping unsaved changes")

            logging.info(f"Bulk save completed: {result.success_count} success, {result.error_count} errors")
            return result
        finally:
            self.is_saving = False
