"""Normalization of backend attendance payloads into stable view models.

The attendance endpoints answer with different shapes depending on the role
and the endpoint: flat ``student_name``/``coach_name`` fields, nested
``personal_info``/``contact_info`` documents, a ``courses`` list, an optional
``attendance`` sub-document, arrays or wrapped objects. Everything here is
total: a malformed item yields a well-formed record with safe defaults and a
logged warning, never an exception.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from models.attendance_models import (
    AttendanceRecord, AttendanceStatus, EntityKind, OverviewStats
)
from utils.errors import InvalidRequest

DISPLAY_TIME_FORMAT = "%I:%M %p"


def validate_date(date: str) -> str:
    """Check a yyyy-MM-dd date string"""
    try:
        return datetime.strptime(date, "%Y-%m-%d").strftime("%Y-%m-%d")
    except (TypeError, ValueError):
        raise InvalidRequest("Invalid date format. Use YYYY-MM-DD")


def make_record_id(entity_id: str, date: str) -> str:
    """Composite key, unique per entity per day"""
    return f"{entity_id}_{date}"


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip()


def _first_text(*values: Any) -> str:
    for value in values:
        text = _text(value)
        if text:
            return text
    return ""


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (``Z`` suffix accepted) or pass a datetime through"""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Not a timestamp: {value!r}")
    return datetime.fromisoformat(value.strip().replace('Z', '+00:00'))


def format_display_time(value: Any) -> Optional[str]:
    """Reformat a backend timestamp as a 12-hour local display time.

    Naive timestamps are read as local time, aware ones are converted to local
    time. Returns None, after logging, when the value cannot be parsed.
    """
    if value is None or value == "":
        return None
    try:
        parsed = parse_timestamp(value)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone()
        return parsed.strftime(DISPLAY_TIME_FORMAT)
    except (ValueError, TypeError, OverflowError, OSError) as e:
        logging.warning(f"Failed to parse attendance time {value!r}: {e}")
        return None


def resolve_status(raw: dict) -> AttendanceStatus:
    attendance = _as_dict(raw.get("attendance"))
    candidates = [attendance.get("status"), raw.get("attendance_status"), raw.get("status")]
    for index, candidate in enumerate(candidates):
        if not candidate:
            continue
        try:
            return AttendanceStatus(_text(candidate).lower())
        except ValueError:
            # Top-level "status" is often the account status ("active")
            if index < 2:
                logging.warning(f"Unknown attendance status {candidate!r}, treating as not marked")
    return AttendanceStatus.NOT_MARKED


def resolve_display_name(raw: dict, kind: EntityKind) -> str:
    personal_info = _as_dict(raw.get("personal_info"))
    joined = f"{_text(raw.get('first_name'))} {_text(raw.get('last_name'))}".strip()
    personal = f"{_text(personal_info.get('first_name'))} {_text(personal_info.get('last_name'))}".strip()
    name = _first_text(
        raw.get("full_name"),
        joined,
        personal,
        raw.get(f"{kind.value}_name"),
        raw.get("name"),
    )
    return name or f"Unknown {kind.label}"


def resolve_entity_id(raw: dict, kind: EntityKind) -> str:
    return _first_text(raw.get(f"{kind.value}_id"), raw.get("id"), raw.get("user_id"))


def _primary_course(raw: dict) -> dict:
    courses = raw.get("courses")
    if isinstance(courses, list) and courses:
        return _as_dict(courses[0])
    return {}


def resolve_expertise(raw: dict) -> List[str]:
    professional_info = _as_dict(raw.get("professional_info"))
    value = (
        raw.get("expertise")
        or raw.get("areas_of_expertise")
        or professional_info.get("areas_of_expertise")
        or []
    )
    if isinstance(value, str):
        value = [part for part in value.replace(';', ',').split(',')]
    if not isinstance(value, (list, tuple)):
        return []
    return [_text(tag) for tag in value if _text(tag)]


def normalize_record(
    raw: Any,
    kind: EntityKind,
    date: str,
    branch_names: Optional[Dict[str, str]] = None,
    position: Optional[int] = None,
) -> AttendanceRecord:
    """Convert one backend entity into an AttendanceRecord for ``date``.

    ``position`` is the index of the item in its batch; it keys records whose
    payload carries no id so they stay distinct.
    """
    if not isinstance(raw, dict):
        logging.warning(f"Unexpected {kind.value} payload {raw!r}, using defaults")
        raw = {}

    attendance = _as_dict(raw.get("attendance"))
    contact_info = _as_dict(raw.get("contact_info"))
    branch_assignment = _as_dict(raw.get("branch_assignment"))
    branch = _as_dict(raw.get("branch"))
    course = _primary_course(raw)

    entity_id = resolve_entity_id(raw, kind)
    record_key = entity_id
    if not entity_id:
        logging.warning(f"{kind.label} payload without an id: {raw!r}")
        if position is not None:
            record_key = f"unidentified-{kind.value}-{position}"

    branch_id = _first_text(
        raw.get("branch_id"),
        branch_assignment.get("branch_id"),
        course.get("branch_id"),
    )
    branch_name = _first_text(
        raw.get("branch_name"),
        branch.get("name"),
        branch_assignment.get("branch_name"),
        (branch_names or {}).get(branch_id),
    ) or "Unknown Branch"

    course_id = None
    course_name = None
    if kind is EntityKind.STUDENT:
        course_id = _first_text(raw.get("course_id"), course.get("id"), course.get("course_id")) or None
        course_name = _first_text(
            raw.get("course_name"),
            course.get("name"),
            course.get("course_name"),
            course.get("title"),
        ) or "No Course"

    return AttendanceRecord(
        id=make_record_id(record_key, date),
        entity_id=entity_id,
        entity_kind=kind,
        entity_name=resolve_display_name(raw, kind),
        email=_first_text(raw.get("email"), contact_info.get("email")),
        phone=_first_text(raw.get("phone"), contact_info.get("phone")),
        branch_id=branch_id,
        branch_name=branch_name,
        course_id=course_id,
        course_name=course_name,
        expertise=resolve_expertise(raw) if kind is EntityKind.COACH else [],
        date=date,
        status=resolve_status(raw),
        check_in_time=format_display_time(attendance.get("check_in_time")),
        check_out_time=format_display_time(attendance.get("check_out_time")),
        notes=_text(attendance.get("notes")),
    )


def extract_items(payload: Any, kind: EntityKind) -> list:
    """Pull the entity list out of an array or a wrapped response"""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in (kind.plural, "data", "records", "items"):
            items = payload.get(key)
            if isinstance(items, list):
                return items
    if payload not in (None, {}):
        logging.warning(f"Unexpected {kind.plural} response shape: {type(payload).__name__}")
    return []


def normalize_batch(
    payload: Any,
    kind: EntityKind,
    date: str,
    branch_names: Optional[Dict[str, str]] = None,
) -> List[AttendanceRecord]:
    return [
        normalize_record(item, kind, date, branch_names, position)
        for position, item in enumerate(extract_items(payload, kind))
    ]


def branch_name_lookup(branches: Iterable[Any]) -> Dict[str, str]:
    """Map branch id to display name from the /branches listing"""
    lookup = {}
    for branch in branches or []:
        branch = _as_dict(branch)
        branch_id = _text(branch.get("id"))
        if branch_id:
            lookup[branch_id] = _first_text(
                _as_dict(branch.get("branch")).get("name"), branch.get("name")
            ) or "Unknown Branch"
    return lookup


def _number(value: Any, default: float = 0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        logging.warning(f"Ignoring non-numeric stats value {value!r}")
        return default


def normalize_overview_stats(payload: Any) -> OverviewStats:
    """Map either shape of the /attendance/stats response onto OverviewStats"""
    data = _as_dict(payload)

    def pick(*keys):
        for key in keys:
            if data.get(key) is not None:
                return _number(data.get(key))
        return 0

    total_students = int(pick("total_students"))
    total_coaches = int(pick("total_coaches"))
    student_present = int(pick("student_present_today", "today_present_students"))
    coach_present = int(pick("coach_present_today", "today_present_coaches"))
    student_late = int(pick("student_late_today"))
    coach_late = int(pick("coach_late_today"))

    stats = OverviewStats(
        total_students=total_students,
        total_coaches=total_coaches,
        student_present_today=student_present,
        student_absent_today=int(pick("student_absent_today")) if "student_absent_today" in data
        else max(0, total_students - student_present),
        student_late_today=student_late,
        coach_present_today=coach_present,
        coach_absent_today=int(pick("coach_absent_today")) if "coach_absent_today" in data
        else max(0, total_coaches - coach_present),
        coach_late_today=coach_late,
        student_attendance_rate=pick("student_attendance_rate", "average_student_attendance"),
        coach_attendance_rate=pick("coach_attendance_rate", "average_coach_attendance"),
        source="stats",
    )

    if "overall_attendance_rate" in data:
        stats.overall_attendance_rate = pick("overall_attendance_rate")
    elif total_students + total_coaches > 0:
        attended = student_present + student_late + coach_present + coach_late
        stats.overall_attendance_rate = attended / (total_students + total_coaches) * 100
    return stats
