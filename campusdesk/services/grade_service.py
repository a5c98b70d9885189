import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Union

from ..db.gateway import RecordStoreGateway
from ..models.db_models import Assignment, Course, GradeRosterEntry, Profile
from .errors import InvalidInputError, NoRecordsToSaveError, PolicyViolationError, raise_for_store_error
from .roster import load_enrolled_students, sort_by_name

logger = logging.getLogger(__name__)

GRADES_POLICY_REMEDIATION = (
    "Writing grades was refused by the row-level security policy on the grades table. "
    "An administrator must allow INSERT/UPDATE on grades for this role."
)

Marks = Union[int, float, str, None]


def _to_marks(value: Marks) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def grade_percentage(marks_obtained: Optional[float], max_marks: Optional[float]) -> int:
    """Rounded percentage of the maximum; 0 when the assignment has no maximum."""
    if not max_marks:
        return 0
    return round((marks_obtained or 0) / max_marks * 100)


class GradeService:
    def __init__(self, gateway: RecordStoreGateway):
        self.gateway = gateway

    async def list_course_options(self, profile: Profile) -> List[Course]:
        query = self.gateway.table("courses").select("*").order("code")
        if profile.role == "faculty":
            query = query.eq("faculty_id", profile.id)
        result = await self.gateway.execute(query, "courses:listForGrades", {"userId": profile.id, "role": profile.role})
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load courses")
        return [Course.model_validate(row) for row in result.rows()]

    async def list_assignments(self, course_id: str) -> List[Assignment]:
        result = await self.gateway.execute(
            self.gateway.table("assignments").select("*").eq("course_id", course_id).order("due_date"),
            "assignments:listForCourse",
            {"courseId": course_id},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load assignments")
        return [Assignment.model_validate(row) for row in result.rows()]

    async def create_assignment(self, course_id: str, title: str, max_marks: float = 100, due_date: Optional[date] = None) -> Assignment:
        title = (title or "").strip()
        if not title:
            raise InvalidInputError("Please enter an assignment title.")
        if max_marks is None or max_marks <= 0:
            raise InvalidInputError("Maximum marks must be greater than 0.")

        payload: Dict[str, Any] = {"course_id": course_id, "title": title, "max_marks": max_marks}
        if due_date is not None:
            payload["due_date"] = due_date.isoformat()

        result = await self.gateway.execute(
            self.gateway.table("assignments").insert(payload),
            "assignments:insert",
            {"courseId": course_id, "payload": payload},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to create assignment")

        logger.info(f"Assignment '{title}' created for course '{course_id}'.")
        return Assignment.model_validate(result.first() or payload)

    async def load_grade_roster(self, assignment_id: str, course_id: str) -> List[GradeRosterEntry]:
        """
        Every enrolled student once with their current marks (None when not
        graded yet), sorted by name. Shares the roster loading of attendance.
        """
        context = {"assignmentId": assignment_id}
        students = await load_enrolled_students(self.gateway, course_id, context)

        result = await self.gateway.execute(
            self.gateway.table("grades").select("*").eq("assignment_id", assignment_id),
            "grades:listForAssignment",
            context,
        )
        marks: Dict[str, Any] = {}
        if result.ok:
            marks = {g["student_id"]: g.get("marks_obtained") for g in result.rows() if g.get("student_id")}
        elif result.error.is_policy_violation:
            raise PolicyViolationError("Failed to load grades", result.error, GRADES_POLICY_REMEDIATION)

        roster = [GradeRosterEntry(**s.model_dump(), marks_obtained=marks.get(s.id)) for s in students]
        return sort_by_name(roster)

    async def save_grades(self, assignment_id: str, edits: Mapping[str, Marks]) -> int:
        """
        Upserts one grade per (assignment, student); blank entries are skipped.
        Non-numeric marks are stored as 0.
        """
        records = [
            {"assignment_id": assignment_id, "student_id": student_id, "marks_obtained": _to_marks(marks)}
            for student_id, marks in edits.items()
            if marks is not None and marks != ""
        ]
        if not records:
            raise NoRecordsToSaveError("Please enter at least one grade.")

        result = await self.gateway.execute(
            self.gateway.table("grades").upsert(records, on_conflict="assignment_id,student_id"),
            "grades:upsertForAssignment",
            {"assignmentId": assignment_id, "recordsCount": len(records)},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to save grades", GRADES_POLICY_REMEDIATION)
        return len(records)

    async def list_student_grades(self, student: Profile) -> List[Dict[str, Any]]:
        """The student's grades, newest first, each with its assignment, course and percentage."""
        result = await self.gateway.execute(
            self.gateway.table("grades")
            .select("*, assignment:assignments(*, course:courses(*))")
            .eq("student_id", student.id)
            .order("graded_at", ascending=False),
            "grades:listForStudent",
            {"userId": student.id, "studentId": student.id},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load your grades")

        grades = []
        for row in result.rows():
            assignment = row.get("assignment") or {}
            grades.append({**row, "percentage": grade_percentage(row.get("marks_obtained"), assignment.get("max_marks"))})
        return grades
