from pydantic import BaseModel, Field
from typing import Optional, List
from enum import Enum

class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    NOT_MARKED = "not_marked"

    @property
    def display_name(self) -> str:
        """Display label used in tables and CSV exports"""
        if self is AttendanceStatus.NOT_MARKED:
            return "Not Marked"
        return self.value.capitalize()

class EntityKind(str, Enum):
    STUDENT = "student"
    COACH = "coach"

    @property
    def plural(self) -> str:
        return "students" if self is EntityKind.STUDENT else "coaches"

    @property
    def label(self) -> str:
        return self.value.capitalize()

class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SUCCESS = "success"
    ERROR = "error"

class SyncPolicy(str, Enum):
    IMMEDIATE = "immediate"  # one write per mark
    DEFERRED = "deferred"    # local marks, written by "save all"

class AttendanceRecord(BaseModel):
    id: str
    entity_id: str
    entity_kind: EntityKind
    entity_name: str
    email: str = ""
    phone: str = ""
    branch_id: str = ""
    branch_name: str = ""
    course_id: Optional[str] = None
    course_name: Optional[str] = None
    expertise: List[str] = Field(default_factory=list)
    date: str  # yyyy-MM-dd
    status: AttendanceStatus = AttendanceStatus.NOT_MARKED
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    notes: str = ""

class AttendanceStats(BaseModel):
    total: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    not_marked: int = 0
    attendance_rate: float = 0.0

class OverviewStats(BaseModel):
    total_students: int = 0
    total_coaches: int = 0
    student_present_today: int = 0
    student_absent_today: int = 0
    student_late_today: int = 0
    coach_present_today: int = 0
    coach_absent_today: int = 0
    coach_late_today: int = 0
    overall_attendance_rate: float = 0.0
    student_attendance_rate: float = 0.0
    coach_attendance_rate: float = 0.0
    source: str = "stats"  # "stats" endpoint or "derived" from entity lists

class AttendanceMarkRequest(BaseModel):
    user_id: str
    user_type: EntityKind
    course_id: Optional[str] = None
    branch_id: str
    attendance_date: str  # ISO date with time
    status: AttendanceStatus
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    notes: Optional[str] = None

class MarkOutcome(BaseModel):
    record: AttendanceRecord
    save_status: Optional[SaveStatus] = None
    error: Optional[str] = None

class BulkSaveResult(BaseModel):
    success_count: int = 0
    error_count: int = 0
    failed_ids: List[str] = Field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None

class Banner(BaseModel):
    level: str  # "success" or "error"
    message: str
    category: Optional[str] = None
    retryable: bool = False
    persistent: bool = False

class SessionUser(BaseModel):
    id: str
    email: str = ""
    full_name: str = ""
    role: str = ""
    token: str

# Request bodies for the session routes
class SessionCreate(BaseModel):
    kind: EntityKind
    date: Optional[str] = None  # defaults to today
    policy: Optional[SyncPolicy] = None

class MarkRequest(BaseModel):
    status: AttendanceStatus

class DateChange(BaseModel):
    date: str

class SessionView(BaseModel):
    session_id: str
    kind: EntityKind
    policy: SyncPolicy
    date: str
    records: List[AttendanceRecord]
    total_records: int
    stats: AttendanceStats
    save_status: dict
    has_unsaved_changes: bool
    is_saving: bool
    banners: List[Banner] = Field(default_factory=list)
