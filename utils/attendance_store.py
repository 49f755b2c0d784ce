import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from models.attendance_models import (
    AttendanceRecord, AttendanceStats, AttendanceStatus, EntityKind, SaveStatus
)
from utils.attendance_stats import compute_stats
from utils.errors import InvalidRequest, NotFound
from utils.expiring_map import ExpiringMap
from utils.normalizer import DISPLAY_TIME_FORMAT

MARKABLE_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.ABSENT, AttendanceStatus.LATE)


def record_matches(record: AttendanceRecord, query: str) -> bool:
    """Case-insensitive substring match on the searchable fields"""
    needle = query.lower()
    fields = [record.entity_name, record.email, record.course_name or "", record.branch_name]
    fields.extend(record.expertise)
    return any(needle in field.lower() for field in fields if field)


def filter_records(
    records: Iterable[AttendanceRecord],
    query: Optional[str] = None,
    branch_id: Optional[str] = None,
    course_id: Optional[str] = None,
    status: Optional[AttendanceStatus] = None,
) -> List[AttendanceRecord]:
    query = (query or "").strip()
    results = []
    for record in records:
        if query and not record_matches(record, query):
            continue
        if branch_id and record.branch_id != branch_id:
            continue
        if course_id and record.course_id != course_id:
            continue
        if status and record.status != status:
            continue
        results.append(record)
    return results


class AttendanceStore:
    """Attendance records of one page session, keyed by record id.

    Holds the records in load order, their save statuses and the set-level
    unsaved-changes flag. Stats are recomputed from the whole set after every
    status change.
    """

    def __init__(
        self,
        kind: EntityKind,
        date: str,
        status_rest_state: Optional[SaveStatus] = SaveStatus.IDLE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.kind = kind
        self.date = date
        self.clock = clock
        self.status_rest_state = status_rest_state
        self._records: Dict[str, AttendanceRecord] = {}
        if status_rest_state is None:
            self.save_status = ExpiringMap()
        else:
            self.save_status = ExpiringMap(rest_value=status_rest_state)
        self.has_unsaved_changes = False
        # Bumped on every local change; a bulk save only clears the flag if it did not move
        self.change_count = 0
        self.stats = AttendanceStats()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(list(self._records.values()))

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    @property
    def records(self) -> List[AttendanceRecord]:
        return list(self._records.values())

    def load(self, records: Iterable[AttendanceRecord], date: Optional[str] = None):
        """Replace the whole record set"""
        if date:
            self.date = date
        loaded = {}
        for record in records:
            if record.id in loaded:
                logging.warning(f"Duplicate attendance record {record.id}, keeping the first one")
                continue
            loaded[record.id] = record
        self._records = loaded
        self.save_status.clear()
        self.has_unsaved_changes = False
        self.recompute_stats()

    def get(self, record_id: str) -> AttendanceRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFound(f"{self.kind.label} attendance record not found")
        return record

    def display_time_now(self) -> str:
        return self.clock().strftime(DISPLAY_TIME_FORMAT)

    def apply_mark(self, record_id: str, status: AttendanceStatus) -> AttendanceRecord:
        """Optimistically apply a mark to the local record"""
        try:
            status = AttendanceStatus(status)
        except ValueError:
            raise InvalidRequest(f"Unknown attendance status: {status}")
        if status not in MARKABLE_STATUSES:
            raise InvalidRequest(f"Cannot mark attendance as {status.value}")
        record = self.get(record_id)
        record.status = status
        record.check_in_time = None if status is AttendanceStatus.ABSENT else self.display_time_now()
        self.recompute_stats()
        return record

    def merge_confirmed(
        self,
        record_id: str,
        status: Optional[AttendanceStatus] = None,
        check_in_time: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AttendanceRecord:
        record = self.get(record_id)
        if status is not None:
            record.status = AttendanceStatus(status)
            record.check_in_time = None if record.status is AttendanceStatus.ABSENT else check_in_time
        if notes is not None:
            record.notes = notes
        self.recompute_stats()
        return record

    def recompute_stats(self) -> AttendanceStats:
        self.stats = compute_stats(self._records.values())
        return self.stats

    def set_save_status(self, record_id: str, status: SaveStatus, expire_after: Optional[float] = None):
        self.save_status.set(record_id, SaveStatus(status), expire_after)

    def clear_save_status(self, record_id: str, delay: Optional[float] = None):
        self.save_status.expire(record_id, delay)

    def get_save_status(self, record_id: str) -> Optional[SaveStatus]:
        default = None if self.save_status.deletes_on_expiry else self.status_rest_state
        return self.save_status.get(record_id, default)

    def mark_dirty(self):
        self.has_unsaved_changes = True
        self.change_count += 1

    def mark_clean(self, seen_change_count: Optional[int] = None):
        """Clear the unsaved flag, unless changes arrived after ``seen_change_count``"""
        if seen_change_count is not None and seen_change_count != self.change_count:
            return False
        self.has_unsaved_changes = False
        return True

    def dirty_records(self) -> List[AttendanceRecord]:
        """Records a bulk save writes, in collection order"""
        return [r for r in self._records.values() if r.status is not AttendanceStatus.NOT_MARKED]

    def filter(
        self,
        query: Optional[str] = None,
        branch_id: Optional[str] = None,
        course_id: Optional[str] = None,
        status: Optional[AttendanceStatus] = None,
    ) -> List[AttendanceRecord]:
        return filter_records(self._records.values(), query, branch_id, course_id, status)

    def close(self):
        self.save_status.clear()
