import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..db.gateway import RecordStoreGateway
from ..models.db_models import Course, Enrollment, Profile, Semester
from .errors import AlreadyEnrolledError, InvalidInputError, raise_for_store_error

logger = logging.getLogger(__name__)

SELF_ENROLL_REMEDIATION = (
    "This usually means the database needs to allow students to enroll themselves. "
    "The enrollments policy should allow: INSERT where student_id = auth.uid()"
)
SELF_UNENROLL_REMEDIATION = (
    "The enrollments policy should allow: DELETE where student_id = auth.uid()"
)


class EnrollmentFormOptions(BaseModel):
    students: List[Profile] = []
    courses: List[Course] = []
    semesters: List[Semester] = []


class CourseCatalog(BaseModel):
    courses: List[Course] = []
    enrolled_course_ids: List[str] = []
    active_semesters: List[Semester] = []


class EnrollmentService:
    """Enrollment management for admins and course self-enrollment for students."""

    def __init__(self, gateway: RecordStoreGateway, actor: Profile):
        self.gateway = gateway
        self.actor = actor

    def _context(self, **extra: Any) -> Dict[str, Any]:
        return {"userId": self.actor.id, **extra}

    # ===== Admin =====

    async def list_enrollments(self) -> List[Dict[str, Any]]:
        result = await self.gateway.execute(
            self.gateway.table("enrollments").select("*, student:profiles(*), course:courses(*), semester:semesters(*)"),
            "enrollments:list",
            self._context(),
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load enrollments")
        return result.rows()

    async def load_form_options(self) -> EnrollmentFormOptions:
        """Students, courses and semesters for the enrollment form. A failed list comes back empty."""
        students, courses, semesters = await asyncio.gather(
            self.gateway.execute(
                self.gateway.table("profiles").select("*").eq("role", "student"),
                "profiles:listStudentsForEnrollments",
                self._context(),
            ),
            self.gateway.execute(self.gateway.table("courses").select("*"), "courses:listForEnrollments", self._context()),
            self.gateway.execute(self.gateway.table("semesters").select("*"), "semesters:listForEnrollments", self._context()),
        )
        return EnrollmentFormOptions(
            students=[Profile.model_validate(r) for r in students.rows()] if students.ok else [],
            courses=[Course.model_validate(r) for r in courses.rows()] if courses.ok else [],
            semesters=[Semester.model_validate(r) for r in semesters.rows()] if semesters.ok else [],
        )

    async def enroll(self, student_id: str, course_id: str, semester_id: str) -> Enrollment:
        if not student_id or not course_id or not semester_id:
            raise InvalidInputError("Student, course and semester are required.")
        form = {"student_id": student_id, "course_id": course_id, "semester_id": semester_id}
        result = await self.gateway.execute(
            self.gateway.table("enrollments").insert(form), "enrollments:insert", self._context(form=form)
        )
        if not result.ok:
            if result.error.is_unique_violation:
                raise AlreadyEnrolledError("The student is already enrolled in this course for that semester.", result.error)
            raise_for_store_error(result.error, "Failed to enroll")
        return Enrollment.model_validate(result.first() or form)

    async def remove(self, enrollment_id: str):
        result = await self.gateway.execute(
            self.gateway.table("enrollments").delete().eq("id", enrollment_id),
            "enrollments:delete",
            self._context(enrollmentId=enrollment_id),
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to remove enrollment")

    # ===== Student =====

    async def load_catalog(self) -> CourseCatalog:
        """All courses, the student's enrolled course ids and the active semesters, fetched concurrently."""
        courses, enrolled, semesters = await asyncio.gather(
            self.gateway.execute(self.gateway.table("courses").select("*").order("code"), "courses:listCatalog", self._context()),
            self.gateway.execute(
                self.gateway.table("enrollments").select("course_id").eq("student_id", self.actor.id),
                "enrollments:listForStudent",
                self._context(studentId=self.actor.id),
            ),
            self.gateway.execute(
                self.gateway.table("semesters").select("*").eq("is_active", True).order("name"),
                "semesters:listActive",
                self._context(),
            ),
        )
        return CourseCatalog(
            courses=[Course.model_validate(r) for r in courses.rows()] if courses.ok else [],
            enrolled_course_ids=[r["course_id"] for r in enrolled.rows() if r.get("course_id")] if enrolled.ok else [],
            active_semesters=[Semester.model_validate(r) for r in semesters.rows()] if semesters.ok else [],
        )

    async def _enrolled_course_ids(self) -> List[str]:
        result = await self.gateway.execute(
            self.gateway.table("enrollments").select("course_id").eq("student_id", self.actor.id),
            "enrollments:listForStudent",
            self._context(studentId=self.actor.id),
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load your enrollments")
        return [r["course_id"] for r in result.rows() if r.get("course_id")]

    async def self_enroll(self, course_id: str, semester_id: Optional[str]) -> Enrollment:
        """Enrolls the signed-in student in a course for the chosen semester."""
        if not semester_id:
            raise InvalidInputError("Please select a semester first.")
        if course_id in await self._enrolled_course_ids():
            raise AlreadyEnrolledError("You are already enrolled in this course.")

        form = {"student_id": self.actor.id, "course_id": course_id, "semester_id": semester_id}
        result = await self.gateway.execute(
            self.gateway.table("enrollments").insert(form),
            "enrollments:insertFromCatalog",
            self._context(courseId=course_id, semesterId=semester_id),
        )
        if not result.ok:
            if result.error.is_unique_violation:
                raise AlreadyEnrolledError("You are already enrolled in this course.", result.error)
            raise_for_store_error(result.error, "Failed to enroll", SELF_ENROLL_REMEDIATION)

        logger.info(f"Student '{self.actor.id}' enrolled in course '{course_id}' for semester '{semester_id}'.")
        return Enrollment.model_validate(result.first() or form)

    async def list_my_enrollments(self) -> List[Dict[str, Any]]:
        result = await self.gateway.execute(
            self.gateway.table("enrollments").select("*, course:courses(*), semester:semesters(*)").eq("student_id", self.actor.id),
            "enrollments:listForMyCourses",
            self._context(studentId=self.actor.id),
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load your courses")
        return result.rows()

    async def unenroll_self(self, enrollment_id: str) -> bool:
        """
        Removes one of the student's own enrollments. Returns False when
        nothing matched (unknown id or someone else's enrollment).
        """
        result = await self.gateway.execute(
            self.gateway.table("enrollments").delete(returning=True).eq("id", enrollment_id).eq("student_id", self.actor.id).select("id"),
            "enrollments:deleteByStudent",
            self._context(enrollmentId=enrollment_id, studentId=self.actor.id),
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to unenroll", SELF_UNENROLL_REMEDIATION)
        return bool(result.rows())
