import logging
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from ..db.gateway import RecordStoreGateway
from ..models.db_models import RosterStudent, UNKNOWN_STUDENT_NAME
from .errors import PolicyViolationError, RosterUnavailableError

logger = logging.getLogger(__name__)

ROSTER_POLICY_REMEDIATION = (
    "Reading enrollments for this course was refused by the row-level security policy. "
    "An administrator must allow SELECT on enrollments (and profiles) for this role."
)

T = TypeVar("T", bound=RosterStudent)


def sort_by_name(students: Sequence[T]) -> List[T]:
    """Case-insensitive name order; e-mail stands in for a missing name, id breaks ties."""
    return sorted(students, key=lambda s: ((s.full_name or s.email or "").lower(), s.id))


async def load_enrolled_students(gateway: RecordStoreGateway, course_id: str, context: Optional[Dict[str, Any]] = None) -> List[RosterStudent]:
    """
    Returns every student enrolled in the course, once each, in enrollment
    order. Students whose profile did not come back through the join are kept
    with a placeholder name, then filled in by one batch profile lookup.
    Raises RosterUnavailableError if the enrollments cannot be read.
    """
    context = context or {}
    result = await gateway.execute(
        gateway.table("enrollments").select("student_id, student:profiles(id, full_name, email)").eq("course_id", course_id),
        "enrollments:listStudentsForCourse",
        {**context, "courseId": course_id},
    )
    if not result.ok:
        if result.error.is_policy_violation:
            raise PolicyViolationError("Failed to load students", result.error, ROSTER_POLICY_REMEDIATION)
        raise RosterUnavailableError("Failed to load students", result.error)

    students: Dict[str, RosterStudent] = {}
    unresolved: List[str] = []
    for enrollment in result.rows():
        student = enrollment.get("student")
        if isinstance(student, dict) and student.get("id"):
            student_id = student["id"]
            if student_id not in students:
                students[student_id] = RosterStudent(
                    id=student_id, full_name=student.get("full_name") or "", email=student.get("email") or ""
                )
        elif enrollment.get("student_id"):
            student_id = enrollment["student_id"]
            if student_id not in students:
                logger.warning(f"Student profile not loaded via join for student_id '{student_id}'.")
                students[student_id] = RosterStudent(id=student_id, full_name=UNKNOWN_STUDENT_NAME, email="")
                unresolved.append(student_id)

    if unresolved:
        await _backfill_names(gateway, students, unresolved, context)

    return list(students.values())


async def _backfill_names(gateway: RecordStoreGateway, students: Dict[str, RosterStudent], student_ids: List[str], context: Dict[str, Any]):
    result = await gateway.execute(
        gateway.table("profiles").select("id, full_name, email").in_("id", student_ids).eq("role", "student"),
        "profiles:backfillRosterNames",
        {**context, "studentIds": student_ids},
    )
    if not result.ok:
        # Already logged by the gateway; the placeholders stay.
        return
    for profile in result.rows():
        student = students.get(profile.get("id"))
        if student is not None:
            student.full_name = profile.get("full_name") or UNKNOWN_STUDENT_NAME
            student.email = profile.get("email") or ""
