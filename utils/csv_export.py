import csv
import io
from typing import Iterable, Tuple

from models.attendance_models import AttendanceRecord, EntityKind

STUDENT_COLUMNS = ['Student Name', 'Email', 'Course', 'Branch', 'Date', 'Status', 'Check-in Time', 'Notes']
COACH_COLUMNS = ['Coach Name', 'Email', 'Phone', 'Expertise', 'Date', 'Status', 'Check-in Time', 'Notes']


def export_filename(kind: EntityKind, date: str) -> str:
    return f"{kind.value}_attendance_{date}.csv"


def _row(record: AttendanceRecord, date: str) -> list:
    if record.entity_kind is EntityKind.COACH:
        return [
            record.entity_name,
            record.email or '',
            record.phone or '',
            '; '.join(record.expertise),
            date,
            record.status.display_name,
            record.check_in_time or '',
            record.notes or '',
        ]
    return [
        record.entity_name,
        record.email or '',
        record.course_name or '',
        record.branch_name or '',
        date,
        record.status.display_name,
        record.check_in_time or '',
        record.notes or '',
    ]


def export_attendance_csv(records: Iterable[AttendanceRecord], kind: EntityKind, date: str) -> Tuple[str, str]:
    """Build the CSV download for the currently filtered records.

    Returns ``(filename, content)``. The header row is plain, every data
    cell is quoted.
    """
    output = io.StringIO()
    output.write(','.join(COACH_COLUMNS if kind is EntityKind.COACH else STUDENT_COLUMNS) + '\n')
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator='\n')
    for record in records:
        writer.writerow(_row(record, date))
    return export_filename(kind, date), output.getvalue()
