# campusdesk/models/db_models.py

from pydantic import BaseModel, Field, ConfigDict
from datetime import date, datetime
from typing import Literal, Optional

Role = Literal["admin", "faculty", "student"]
AttendanceStatus = Literal["present", "absent", "late"]

ATTENDANCE_STATUSES = ("present", "absent", "late")
DEFAULT_ATTENDANCE_STATUS = "absent"
UNKNOWN_STUDENT_NAME = "Unknown Student"


class StoreRow(BaseModel):
    """Base for rows coming back from the record store; unknown columns are ignored."""
    model_config = ConfigDict(extra="ignore")


class Profile(StoreRow):
    """
    Represents a user's profile, mapping to the 'profiles' table.
    The id is the same as the auth identity id.
    """
    id: str = Field(..., description="Auth identity id, primary key")
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Role = Field("student", description="Can be admin, faculty or student")


class Department(StoreRow):
    id: Optional[str] = None
    name: str
    code: str


class Semester(StoreRow):
    """Maps to the 'semesters' table. More than one semester may be active at once."""
    id: Optional[str] = None
    name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = False


class Course(StoreRow):
    id: Optional[str] = None
    code: str
    name: str
    description: Optional[str] = None
    credits: Optional[int] = None
    department_id: Optional[str] = None
    faculty_id: Optional[str] = Field(None, description="Owning faculty member, nullable")
    created_at: Optional[datetime] = None


class Enrollment(StoreRow):
    """(student, course, semester) triple, mapping to the 'enrollments' table."""
    id: Optional[str] = None
    student_id: str
    course_id: str
    semester_id: Optional[str] = None


class ClassSession(StoreRow):
    """
    One meeting of a course on a calendar date, mapping to 'class_sessions'.
    The semester reference must be set before attendance is keyed on it.
    """
    id: Optional[str] = None
    course_id: str
    session_date: date
    semester_id: Optional[str] = None


class AttendanceRecord(StoreRow):
    """A student's status for one class session; unique per (session_id, student_id)."""
    id: Optional[str] = None
    session_id: str = Field(..., description="FK to class_sessions")
    student_id: str = Field(..., description="FK to profiles")
    status: AttendanceStatus
    marked_at: Optional[datetime] = None


class Assignment(StoreRow):
    id: Optional[str] = None
    course_id: str
    title: str
    due_date: Optional[date] = None
    max_marks: float = 100


class Grade(StoreRow):
    """Marks for one assignment; unique per (assignment_id, student_id)."""
    id: Optional[str] = None
    assignment_id: str
    student_id: str
    marks_obtained: float = 0
    graded_at: Optional[datetime] = None


class RosterStudent(BaseModel):
    """An enrolled student as shown on attendance and grading screens."""
    id: str
    full_name: str = UNKNOWN_STUDENT_NAME
    email: str = ""


class RosterEntry(RosterStudent):
    """A roster line: the enrolled student plus their status for the session."""
    status: AttendanceStatus = DEFAULT_ATTENDANCE_STATUS


class GradeRosterEntry(RosterStudent):
    """A grading line: the enrolled student plus their marks, if any."""
    marks_obtained: Optional[float] = None
