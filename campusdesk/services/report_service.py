import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..db.gateway import RecordStoreGateway
from ..models.db_models import Profile
from .errors import raise_for_store_error

logger = logging.getLogger(__name__)


# --- Flattened report rows ---
class StudentReportRow(BaseModel):
    name: str = ""
    email: str = ""


class CourseReportRow(BaseModel):
    code: str = ""
    name: str = ""
    credits: Optional[int] = None
    department: str = ""
    description: str = ""
    faculty_id: str = ""


class EnrollmentReportRow(BaseModel):
    student: str = ""
    course: str = ""
    semester: str = ""


def _label(ref: Optional[Dict[str, Any]]) -> str:
    """'CODE - name' for a joined department or course, the bare name when it has no code."""
    if not ref:
        return ""
    if ref.get("code"):
        return f"{ref['code']} - {ref.get('name') or ''}"
    return ref.get("name") or ""


def flatten_students(rows: List[Dict[str, Any]]) -> List[StudentReportRow]:
    return [StudentReportRow(name=r.get("full_name") or "", email=r.get("email") or "") for r in rows]


def flatten_courses(rows: List[Dict[str, Any]]) -> List[CourseReportRow]:
    return [
        CourseReportRow(
            code=r.get("code") or "",
            name=r.get("name") or "",
            credits=r.get("credits"),
            department=_label(r.get("department")),
            description=r.get("description") or "",
            faculty_id=r.get("faculty_id") or "",
        )
        for r in rows
    ]


def flatten_enrollments(rows: List[Dict[str, Any]]) -> List[EnrollmentReportRow]:
    flat = []
    for r in rows:
        student = r.get("student") or {}
        semester = r.get("semester") or {}
        flat.append(EnrollmentReportRow(
            student=student.get("full_name") or student.get("email") or "",
            course=_label(r.get("course")),
            semester=semester.get("name") or "",
        ))
    return flat


class ReportService:
    """
    Admin reports: the student list, the course catalog and every enrollment,
    each flattened to plain display columns with the joined rows resolved
    to labels.
    """

    def __init__(self, gateway: RecordStoreGateway, actor: Profile):
        self.gateway = gateway
        self.actor = actor

    async def _fetch(self, query, label: str) -> List[Dict[str, Any]]:
        result = await self.gateway.execute(query, label, {"userId": self.actor.id})
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load report")
        return result.rows()

    async def students_report(self) -> List[StudentReportRow]:
        rows = await self._fetch(
            self.gateway.table("profiles").select("id, full_name, email, role").eq("role", "student").order("full_name"),
            "reports:students",
        )
        return flatten_students(rows)

    async def courses_report(self) -> List[CourseReportRow]:
        rows = await self._fetch(
            self.gateway.table("courses")
            .select("id, code, name, credits, description, department:departments(code, name), faculty_id")
            .order("code"),
            "reports:courses",
        )
        return flatten_courses(rows)

    async def enrollments_report(self) -> List[EnrollmentReportRow]:
        rows = await self._fetch(
            self.gateway.table("enrollments")
            .select("id, student:profiles(full_name, email), course:courses(code, name), semester:semesters(name)")
            .order("created_at", ascending=False),
            "reports:enrollments",
        )
        logger.info(f"Enrollment report built with {len(rows)} rows for admin '{self.actor.id}'.")
        return flatten_enrollments(rows)
