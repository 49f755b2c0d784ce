from typing import Iterable

from models.attendance_models import AttendanceRecord, AttendanceStats, AttendanceStatus, OverviewStats


def attendance_rate(attended: int, total: int) -> float:
    """Percentage of attended (present or late) entities, 0 for an empty set"""
    if total <= 0:
        return 0.0
    return attended / total * 100


def compute_stats(records: Iterable[AttendanceRecord]) -> AttendanceStats:
    """Derive the stat cards from the full record set"""
    counts = {status: 0 for status in AttendanceStatus}
    total = 0
    for record in records:
        counts[record.status] += 1
        total += 1

    present = counts[AttendanceStatus.PRESENT]
    late = counts[AttendanceStatus.LATE]
    return AttendanceStats(
        total=total,
        present=present,
        absent=counts[AttendanceStatus.ABSENT],
        late=late,
        not_marked=counts[AttendanceStatus.NOT_MARKED],
        attendance_rate=attendance_rate(present + late, total),
    )


def compute_overview(
    students: Iterable[AttendanceRecord],
    coaches: Iterable[AttendanceRecord],
) -> OverviewStats:
    """Overview cards derived from the per-entity lists.

    Used when the stats endpoint is unavailable. Entities without a mark
    count as absent, the same way the backend counts them.
    """
    student_stats = compute_stats(students)
    coach_stats = compute_stats(coaches)

    student_attended = student_stats.present + student_stats.late
    coach_attended = coach_stats.present + coach_stats.late
    return OverviewStats(
        total_students=student_stats.total,
        total_coaches=coach_stats.total,
        student_present_today=student_stats.present,
        student_absent_today=student_stats.absent + student_stats.not_marked,
        student_late_today=student_stats.late,
        coach_present_today=coach_stats.present,
        coach_absent_today=coach_stats.absent + coach_stats.not_marked,
        coach_late_today=coach_stats.late,
        student_attendance_rate=student_stats.attendance_rate,
        coach_attendance_rate=coach_stats.attendance_rate,
        overall_attendance_rate=attendance_rate(
            student_attended + coach_attended, student_stats.total + coach_stats.total
        ),
        source="derived",
    )
