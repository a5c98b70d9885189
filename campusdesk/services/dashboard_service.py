import asyncio
import logging
from typing import List, Optional

from pydantic import BaseModel

from ..db.gateway import GatewayResult, RecordStoreGateway
from ..models.db_models import Course, Profile

logger = logging.getLogger(__name__)

RECENT_COURSES_LIMIT = 5


class DashboardStats(BaseModel):
    """Counters for the landing page; fields not relevant to the role stay None."""
    role: str
    students: Optional[int] = None
    courses: Optional[int] = None
    active_semesters: Optional[int] = None
    enrollments: Optional[int] = None
    grades: Optional[int] = None
    attendance: Optional[int] = None
    recent_courses: List[Course] = []


def _count(result: GatewayResult) -> int:
    return (result.count or 0) if result.ok else 0


class DashboardService:
    """
    Role-scoped statistics. Failed counters are logged by the gateway and
    shown as 0 so one refused table does not hide the whole dashboard.
    """

    def __init__(self, gateway: RecordStoreGateway):
        self.gateway = gateway

    def _count_query(self, table: str):
        return self.gateway.table(table).select("id", count="exact", head=True)

    async def load(self, profile: Profile) -> DashboardStats:
        if profile.role == "admin":
            return await self._load_admin(profile)
        if profile.role == "faculty":
            return await self._load_faculty(profile)
        return await self._load_student(profile)

    async def _load_admin(self, profile: Profile) -> DashboardStats:
        ctx = {"userId": profile.id}
        students, courses, semesters, enrollments, grades, recent = await asyncio.gather(
            self.gateway.execute(self._count_query("profiles").eq("role", "student"), "profiles:countStudents", ctx),
            self.gateway.execute(self._count_query("courses"), "courses:count", ctx),
            self.gateway.execute(self._count_query("semesters").eq("is_active", True), "semesters:countActive", ctx),
            self.gateway.execute(self._count_query("enrollments"), "enrollments:count", ctx),
            self.gateway.execute(self._count_query("grades"), "grades:count", ctx),
            self.gateway.execute(
                self.gateway.table("courses").select("*").order("created_at", ascending=False).limit(RECENT_COURSES_LIMIT),
                "courses:listRecent",
                ctx,
            ),
        )

        student_count = _count(students)
        if not students.ok:
            logger.warning("Student count failed; falling back to distinct enrolled students.")
            fallback = await self.gateway.execute(
                self.gateway.table("enrollments").select("student_id"), "enrollments:listStudentIdsForFallback", ctx
            )
            if fallback.ok:
                student_count = len({r.get("student_id") for r in fallback.rows() if r.get("student_id")})

        return DashboardStats(
            role="admin",
            students=student_count,
            courses=_count(courses),
            active_semesters=_count(semesters),
            enrollments=_count(enrollments),
            grades=_count(grades),
            recent_courses=[Course.model_validate(r) for r in recent.rows()] if recent.ok else [],
        )

    async def _load_faculty(self, profile: Profile) -> DashboardStats:
        ctx = {"userId": profile.id, "facultyId": profile.id}
        mine = await self.gateway.execute(
            self.gateway.table("courses").select("id").eq("faculty_id", profile.id), "courses:listFacultyCourseIds", ctx
        )
        course_ids = [r["id"] for r in mine.rows() if r.get("id")] if mine.ok else []
        if not course_ids:
            return DashboardStats(role="faculty", students=0, courses=0, enrollments=0)

        ctx = {**ctx, "courseIdsCount": len(course_ids)}
        enrollments, student_ids = await asyncio.gather(
            self.gateway.execute(
                self._count_query("enrollments").in_("course_id", course_ids), "enrollments:countForFacultyCourses", ctx
            ),
            self.gateway.execute(
                self.gateway.table("enrollments").select("student_id").in_("course_id", course_ids),
                "enrollments:listStudentIdsForFacultyCourses",
                ctx,
            ),
        )
        students = len({r.get("student_id") for r in student_ids.rows() if r.get("student_id")}) if student_ids.ok else 0
        return DashboardStats(role="faculty", students=students, courses=len(course_ids), enrollments=_count(enrollments))

    async def _load_student(self, profile: Profile) -> DashboardStats:
        ctx = {"userId": profile.id, "studentId": profile.id}
        enrollments, grades, attendance = await asyncio.gather(
            self.gateway.execute(self._count_query("enrollments").eq("student_id", profile.id), "enrollments:countForStudent", ctx),
            self.gateway.execute(self._count_query("grades").eq("student_id", profile.id), "grades:countForStudent", ctx),
            self.gateway.execute(self._count_query("attendance").eq("student_id", profile.id), "attendance:countForStudent", ctx),
        )
        return DashboardStats(
            role=profile.role, enrollments=_count(enrollments), grades=_count(grades), attendance=_count(attendance)
        )
