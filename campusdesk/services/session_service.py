import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from ..db.gateway import GatewayResult, RecordStoreGateway
from .errors import (
    NoSemesterAvailableError,
    PolicyViolationError,
    SessionCreateFailedError,
    SessionPolicyViolationError,
)

logger = logging.getLogger(__name__)

SESSION_POLICY_REMEDIATION = (
    "Creating class sessions was refused by the row-level security policy on class_sessions. "
    "An administrator must allow INSERT for this role, e.g. for courses the user teaches "
    "or (for students marking their own attendance) courses they are enrolled in."
)
LOOKUP_POLICY_REMEDIATION = (
    "Reading {table} was refused by the row-level security policy. "
    "An administrator must allow SELECT on {table} for this role."
)


def _check_lookup(result: GatewayResult, table: str, message: str) -> bool:
    """
    Decides what a failed lookup means. Policy violations propagate; any
    other failure was already logged by the gateway and counts as not found.
    """
    if result.ok:
        return True
    if result.error.is_policy_violation:
        raise PolicyViolationError(message, result.error, LOOKUP_POLICY_REMEDIATION.format(table=table))
    return False


# --- Semester resolution strategies ---

class SemesterStrategy:
    """One way of finding the semester a new class session belongs to."""
    name = "base"

    async def find(self, course_id: str, context: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError


class EnrollmentSemesterStrategy(SemesterStrategy):
    """Takes the semester of the first enrollment returned for the course."""
    name = "enrollment"

    def __init__(self, gateway: RecordStoreGateway):
        self.gateway = gateway

    async def find(self, course_id: str, context: Dict[str, Any]) -> Optional[str]:
        result = await self.gateway.execute(
            self.gateway.table("enrollments").select("semester_id").eq("course_id", course_id).limit(1),
            "enrollments:getSemesterForSession",
            {**context, "courseId": course_id},
        )
        if not _check_lookup(result, "enrollments", "Could not read enrollments to find the semester"):
            return None
        row = result.first()
        return row.get("semester_id") if row else None


class ActiveSemesterStrategy(SemesterStrategy):
    """Falls back to any semester flagged active; with several active, one arbitrary match wins."""
    name = "active_semester"

    def __init__(self, gateway: RecordStoreGateway):
        self.gateway = gateway

    async def find(self, course_id: str, context: Dict[str, Any]) -> Optional[str]:
        result = await self.gateway.execute(
            self.gateway.table("semesters").select("id").eq("is_active", True).limit(1),
            "semesters:getActiveForSession",
            context,
        )
        if not _check_lookup(result, "semesters", "Could not read semesters to find the active one"):
            return None
        row = result.first()
        return row.get("id") if row else None


class KnownSemesterStrategy(SemesterStrategy):
    """Uses a semester the caller already knows, e.g. from the student's own enrollment."""
    name = "known"

    def __init__(self, semester_id: Optional[str]):
        self.semester_id = semester_id

    async def find(self, course_id: str, context: Dict[str, Any]) -> Optional[str]:
        return self.semester_id


# --- Engine ---

class SessionResolutionEngine:
    """
    Maps (course, date) to exactly one class session id, creating the
    session when there is none yet. The new session is stamped with the
    first semester the strategies come up with, tried in order.
    """

    def __init__(self, gateway: RecordStoreGateway, strategies: Optional[Sequence[SemesterStrategy]] = None):
        self.gateway = gateway
        if strategies is None:
            strategies = [EnrollmentSemesterStrategy(gateway), ActiveSemesterStrategy(gateway)]
        self.strategies: List[SemesterStrategy] = list(strategies)

    async def find_session(self, course_id: str, session_date: date, context: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """Looks up the session for (course, date). Not finding one is the expected case, not an error."""
        context = context or {}
        result = await self.gateway.execute(
            self.gateway.table("class_sessions").select("id").eq("course_id", course_id).eq("session_date", session_date).limit(1),
            "class_sessions:getByCourseAndDate",
            {**context, "courseId": course_id, "sessionDate": session_date.isoformat()},
        )
        if not _check_lookup(result, "class_sessions", "Could not look up the class session"):
            return None
        row = result.first()
        return row.get("id") if row else None

    async def resolve_semester(self, course_id: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Runs the strategies in order and returns the first semester found."""
        context = context or {}
        for strategy in self.strategies:
            semester_id = await strategy.find(course_id, context)
            if semester_id:
                logger.info(f"Semester '{semester_id}' for course '{course_id}' found by the '{strategy.name}' strategy.")
                return semester_id
            logger.info(f"Strategy '{strategy.name}' found no semester for course '{course_id}'.")
        raise NoSemesterAvailableError(
            "No semester found for this course. Please ensure students are enrolled or an active semester exists."
        )

    async def resolve_session(self, course_id: str, session_date: date, context: Optional[Dict[str, Any]] = None) -> str:
        """
        Returns the id of the class session for (course, date), creating it if
        needed. Raises NoSemesterAvailableError when no semester can be
        derived (nothing is created) and SessionCreateFailedError when the
        insert fails. Insert failures are not retried.
        """
        context = context or {}
        existing_id = await self.find_session(course_id, session_date, context)
        if existing_id:
            return existing_id

        semester_id = await self.resolve_semester(course_id, context)

        payload = {"course_id": course_id, "session_date": session_date.isoformat(), "semester_id": semester_id}
        result = await self.gateway.execute(
            self.gateway.table("class_sessions").insert(payload).select("id"),
            "class_sessions:insert",
            {**context, "courseId": course_id, "sessionDate": session_date.isoformat(), "semesterId": semester_id},
        )
        if not result.ok:
            if result.error.is_policy_violation:
                raise SessionPolicyViolationError(
                    "Failed to create class session due to security policy", result.error, SESSION_POLICY_REMEDIATION
                )
            raise SessionCreateFailedError("Failed to create class session", result.error)

        row = result.first()
        if not row or not row.get("id"):
            raise SessionCreateFailedError("Failed to create or find class session")

        logger.info(f"Class session '{row['id']}' created for course '{course_id}' on {session_date.isoformat()}.")
        return row["id"]
