# campusdesk/api/schemas/attendance.py
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...models.db_models import AttendanceStatus, Course, RosterEntry


class OpenSessionRequest(BaseModel):
    course_id: str
    session_date: date


class SessionRosterResponse(BaseModel):
    session_id: str
    course_id: str
    session_date: Optional[date] = None
    students: List[RosterEntry]


class SaveAttendanceRequest(BaseModel):
    """student_id -> status; blank statuses are skipped."""
    records: Dict[str, Optional[str]] = Field(default_factory=dict)


class SaveResponse(BaseModel):
    saved: int
    message: str


class MarkAttendanceRequest(BaseModel):
    course_id: str
    status: AttendanceStatus = "present"
    session_date: Optional[date] = None


class MarkStatusResponse(BaseModel):
    course_id: str
    marked: bool


class StudentAttendanceResponse(BaseModel):
    history: List[Dict[str, Any]]
    courses: List[Course]
