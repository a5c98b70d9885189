import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..config.config import settings
from ..db.gateway import RecordStoreGateway
from ..models.db_models import (
    ATTENDANCE_STATUSES,
    DEFAULT_ATTENDANCE_STATUS,
    AttendanceRecord,
    ClassSession,
    Course,
    Profile,
    RosterEntry,
)
from .errors import (
    AlreadyMarkedError,
    InvalidDateError,
    InvalidStatusError,
    NoRecordsToSaveError,
    NotEnrolledError,
    PolicyViolationError,
    ServiceError,
    raise_for_store_error,
)
from .roster import load_enrolled_students, sort_by_name
from .session_service import KnownSemesterStrategy, SessionResolutionEngine

logger = logging.getLogger(__name__)

ATTENDANCE_POLICY_REMEDIATION = (
    "Writing attendance was refused by the row-level security policy on the attendance table. "
    "An administrator must allow INSERT/UPDATE on attendance for this role."
)


def campus_today() -> date:
    """Today's date in the campus time zone."""
    return datetime.now(timezone(timedelta(hours=settings.CAMPUS_TIMEZONE_OFFSET_HOURS))).date()


class AttendanceService:
    """
    Attendance reconciliation: builds the complete per-student status view
    of a class session and persists edits to it. Students can also mark their
    own attendance for today.
    """

    def __init__(self, gateway: RecordStoreGateway, session_engine: Optional[SessionResolutionEngine] = None, today: Callable[[], date] = campus_today):
        self.gateway = gateway
        self.session_engine = session_engine or SessionResolutionEngine(gateway)
        self._today = today

    # ===== Faculty / admin flow =====

    async def list_course_options(self, profile: Profile) -> List[Course]:
        """Courses that can be picked on the attendance screen; faculty only see their own."""
        query = self.gateway.table("courses").select("*").order("code")
        if profile.role == "faculty":
            query = query.eq("faculty_id", profile.id)
        result = await self.gateway.execute(query, "courses:listForAttendance", {"userId": profile.id, "role": profile.role})
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load courses")
        return [Course.model_validate(row) for row in result.rows()]

    async def open_session(self, course_id: str, session_date: date, context: Optional[Dict[str, Any]] = None) -> Tuple[str, List[RosterEntry]]:
        """
        Resolves (or creates) the class session, then loads its roster.
        The steps run strictly in order since each needs the previous result.
        """
        context = context or {}
        session_id = await self.session_engine.resolve_session(course_id, session_date, context)
        roster = await self.load_roster(session_id, course_id, context)
        return session_id, roster

    async def get_session(self, session_id: str, context: Optional[Dict[str, Any]] = None) -> Optional[ClassSession]:
        """The class session row by id, or None when it does not exist (or is not visible)."""
        result = await self.gateway.execute(
            self.gateway.table("class_sessions").select("id, course_id, session_date, semester_id").eq("id", session_id).limit(1),
            "class_sessions:getById",
            {**(context or {}), "sessionId": session_id},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Could not look up the class session")
        row = result.first()
        return ClassSession.model_validate(row) if row else None

    async def load_roster(self, session_id: str, course_id: str, context: Optional[Dict[str, Any]] = None) -> List[RosterEntry]:
        """
        Every enrolled student once, with their recorded status or 'absent'
        when there is no record yet, sorted by name.
        Raises RosterUnavailableError if the enrollments cannot be read.
        """
        context = {**(context or {}), "sessionId": session_id}
        students = await load_enrolled_students(self.gateway, course_id, context)

        result = await self.gateway.execute(
            self.gateway.table("attendance").select("student_id, status").eq("session_id", session_id),
            "attendance:listForSession",
            context,
        )
        statuses: Dict[str, str] = {}
        if result.ok:
            for record in result.rows():
                if record.get("student_id"):
                    statuses[record["student_id"]] = record.get("status") or DEFAULT_ATTENDANCE_STATUS
        elif result.error.is_policy_violation:
            raise PolicyViolationError("Failed to load attendance", result.error, ATTENDANCE_POLICY_REMEDIATION)
        else:
            logger.warning(f"Existing attendance for session '{session_id}' could not be loaded; defaulting every student.")

        roster = []
        for student in students:
            status = statuses.get(student.id, DEFAULT_ATTENDANCE_STATUS)
            if status not in ATTENDANCE_STATUSES:
                logger.warning(f"Unknown attendance status '{status}' for student '{student.id}'; showing it as absent.")
                status = DEFAULT_ATTENDANCE_STATUS
            roster.append(RosterEntry(**student.model_dump(), status=status))
        return sort_by_name(roster)

    async def save_attendance(self, session_id: str, edits: Mapping[str, Optional[str]], context: Optional[Dict[str, Any]] = None) -> int:
        """
        Upserts one record per (session, student) in a single call; entries
        without a status are skipped. Returns the number of records sent.
        """
        records = []
        for student_id, status in edits.items():
            if not status:
                continue
            if status not in ATTENDANCE_STATUSES:
                raise InvalidStatusError(f"'{status}' is not a valid attendance status.")
            records.append({"session_id": session_id, "student_id": student_id, "status": status})

        if not records:
            raise NoRecordsToSaveError("Please mark at least one student before saving.")

        result = await self.gateway.execute(
            self.gateway.table("attendance").upsert(records, on_conflict="session_id,student_id"),
            "attendance:upsert",
            {**(context or {}), "sessionId": session_id, "recordsCount": len(records)},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to save attendance", ATTENDANCE_POLICY_REMEDIATION)

        logger.info(f"Saved {len(records)} attendance records for session '{session_id}'.")
        return len(records)

    # ===== Student flow =====

    async def list_enrolled_courses(self, student: Profile) -> List[Course]:
        result = await self.gateway.execute(
            self.gateway.table("enrollments").select("course:courses(*)").eq("student_id", student.id),
            "enrollments:listForStudentAttendance",
            {"userId": student.id, "studentId": student.id},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load your courses")
        courses: Dict[str, Course] = {}
        for row in result.rows():
            course = row.get("course")
            if isinstance(course, dict) and course.get("id") and course["id"] not in courses:
                courses[course["id"]] = Course.model_validate(course)
        return list(courses.values())

    async def list_student_history(self, student: Profile, limit: int = 50) -> List[Dict[str, Any]]:
        """The student's own attendance, newest first, with session and course attached."""
        result = await self.gateway.execute(
            self.gateway.table("attendance")
            .select("*, session:class_sessions(*, course:courses(*))")
            .eq("student_id", student.id)
            .order("marked_at", ascending=False)
            .limit(limit),
            "attendance:listForStudent",
            {"userId": student.id, "studentId": student.id},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load your attendance")
        return result.rows()

    async def load_student_overview(self, student: Profile) -> Tuple[List[Dict[str, Any]], List[Course]]:
        """History and enrolled courses; independent reads, so they run concurrently."""
        history, courses = await asyncio.gather(self.list_student_history(student), self.list_enrolled_courses(student))
        return history, courses

    async def _find_own_record(self, session_id: str, student: Profile) -> bool:
        result = await self.gateway.execute(
            self.gateway.table("attendance").select("id").eq("session_id", session_id).eq("student_id", student.id).limit(1),
            "attendance:checkMarkedToday",
            {"userId": student.id, "sessionId": session_id, "studentId": student.id},
        )
        if not result.ok:
            if result.error.is_policy_violation:
                raise PolicyViolationError("Failed to check your attendance", result.error, ATTENDANCE_POLICY_REMEDIATION)
            return False
        return result.first() is not None

    async def is_marked_today(self, student: Profile, course_id: str) -> bool:
        """Whether the student already has a record for today's session of the course."""
        session_id = await self.session_engine.find_session(course_id, self._today(), {"userId": student.id})
        if not session_id:
            return False
        return await self._find_own_record(session_id, student)

    async def mark_own_attendance(self, student: Profile, course_id: str, status: str = "present", session_date: Optional[date] = None) -> AttendanceRecord:
        """
        Records the student's own attendance for today's session of the course.
        The enrollment is checked before any session is looked up or created.
        """
        if status not in ATTENDANCE_STATUSES:
            raise InvalidStatusError(f"'{status}' is not a valid attendance status.")

        today = self._today()
        if session_date is not None and session_date != today:
            raise InvalidDateError("You can only mark attendance for today.")

        context = {"userId": student.id, "studentId": student.id, "courseId": course_id}
        enrollment = await self.gateway.execute(
            self.gateway.table("enrollments").select("semester_id").eq("course_id", course_id).eq("student_id", student.id).limit(1),
            "enrollments:getForAttendance",
            context,
        )
        row = enrollment.first() if enrollment.ok else None
        if not row or not row.get("semester_id"):
            raise NotEnrolledError(
                "Failed to find your enrollment for this course. Please make sure you are enrolled.", enrollment.error
            )

        engine = SessionResolutionEngine(self.gateway, [KnownSemesterStrategy(row["semester_id"])])
        session_id = await engine.resolve_session(course_id, today, context)

        if await self._find_own_record(session_id, student):
            raise AlreadyMarkedError("You have already marked attendance for this course today.")

        result = await self.gateway.execute(
            self.gateway.table("attendance").insert({"session_id": session_id, "student_id": student.id, "status": status}),
            "attendance:markByStudent",
            {**context, "sessionId": session_id, "status": status},
        )
        if not result.ok:
            if result.error.is_unique_violation:
                raise AlreadyMarkedError("You have already marked attendance for this course today.", result.error)
            if result.error.is_policy_violation:
                raise PolicyViolationError("Failed to mark attendance due to security policy", result.error, ATTENDANCE_POLICY_REMEDIATION)
            raise ServiceError("Failed to mark attendance", result.error)

        logger.info(f"Student '{student.id}' marked '{status}' for session '{session_id}'.")
        created = result.first()
        if created:
            return AttendanceRecord.model_validate(created)
        return AttendanceRecord(session_id=session_id, student_id=student.id, status=status)
