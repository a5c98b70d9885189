import logging
from datetime import date
from typing import Any, Dict, List, Optional

from ..db.gateway import RecordStoreGateway
from ..models.db_models import Course, Department, Profile, Semester
from .errors import InvalidInputError, raise_for_store_error

logger = logging.getLogger(__name__)

ROLES = ("admin", "faculty", "student")


class AdminService:
    """Catalog and user management: departments, semesters, courses and roles."""

    def __init__(self, gateway: RecordStoreGateway, actor: Profile):
        self.gateway = gateway
        self.actor = actor

    def _context(self, **extra: Any) -> Dict[str, Any]:
        return {"userId": self.actor.id, **extra}

    # ===== Departments =====

    async def list_departments(self) -> List[Department]:
        result = await self.gateway.execute(
            self.gateway.table("departments").select("*").order("name"), "departments:list", self._context()
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load departments")
        return [Department.model_validate(row) for row in result.rows()]

    async def create_department(self, name: str, code: str) -> Department:
        name, code = (name or "").strip(), (code or "").strip()
        if not name or not code:
            raise InvalidInputError("Department name and code are required.")
        form = {"name": name, "code": code}
        result = await self.gateway.execute(
            self.gateway.table("departments").insert(form), "departments:insert", self._context(form=form)
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to add department")
        return Department.model_validate(result.first() or form)

    # ===== Semesters =====

    async def list_semesters(self) -> List[Semester]:
        result = await self.gateway.execute(
            self.gateway.table("semesters").select("*").order("start_date", ascending=False),
            "semesters:list",
            self._context(),
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load semesters")
        return [Semester.model_validate(row) for row in result.rows()]

    async def create_semester(self, name: str, start_date: Optional[date] = None, end_date: Optional[date] = None, is_active: bool = True) -> Semester:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("Semester name is required.")
        if start_date and end_date and end_date < start_date:
            raise InvalidInputError("The semester cannot end before it starts.")

        form: Dict[str, Any] = {"name": name, "is_active": is_active}
        if start_date:
            form["start_date"] = start_date.isoformat()
        if end_date:
            form["end_date"] = end_date.isoformat()

        result = await self.gateway.execute(
            self.gateway.table("semesters").insert(form), "semesters:insert", self._context(form=form)
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to add semester")
        return Semester.model_validate(result.first() or form)

    # ===== Courses =====

    async def list_courses(self) -> List[Course]:
        query = self.gateway.table("courses").select("*").order("code")
        if self.actor.role == "faculty":
            query = query.eq("faculty_id", self.actor.id)
        result = await self.gateway.execute(query, "courses:list", self._context())
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load courses")
        return [Course.model_validate(row) for row in result.rows()]

    async def create_course(self, code: str, name: str, department_id: Optional[str], credits: int = 3, description: str = "") -> Course:
        """The creating user becomes the course's faculty member."""
        if not department_id:
            raise InvalidInputError("Please select a department.")
        code, name = (code or "").strip(), (name or "").strip()
        if not code or not name:
            raise InvalidInputError("Course code and name are required.")

        payload = {
            "code": code,
            "name": name,
            "description": description,
            "credits": credits,
            "department_id": department_id,
            "faculty_id": self.actor.id,
        }
        result = await self.gateway.execute(
            self.gateway.table("courses").insert(payload), "courses:insert", self._context(payload=payload)
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to add course")
        logger.info(f"Course '{code}' created by '{self.actor.id}'.")
        return Course.model_validate(result.first() or payload)

    # ===== Users =====

    async def list_users(self, search: Optional[str] = None) -> List[Profile]:
        result = await self.gateway.execute(
            self.gateway.table("profiles").select("*").order("full_name"), "profiles:listForAdminUsers", self._context()
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to load users")
        users = [Profile.model_validate(row) for row in result.rows()]
        if search:
            needle = search.lower()
            users = [u for u in users if needle in (u.full_name or "").lower() or needle in (u.email or "").lower()]
        return users

    async def update_role(self, user_id: str, role: str) -> Optional[Profile]:
        if role not in ROLES:
            raise InvalidInputError(f"'{role}' is not a valid role.")
        result = await self.gateway.execute(
            self.gateway.table("profiles").update({"role": role}).eq("id", user_id),
            "profiles:updateRole",
            self._context(targetUserId=user_id, newRole=role),
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to update role")
        logger.info(f"Role of '{user_id}' changed to '{role}' by '{self.actor.id}'.")
        row = result.first()
        return Profile.model_validate(row) if row else None
