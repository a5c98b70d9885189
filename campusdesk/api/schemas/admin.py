# campusdesk/api/schemas/admin.py
from datetime import date
from typing import Optional

from pydantic import BaseModel

from ...models.db_models import Role


class DepartmentCreateRequest(BaseModel):
    name: str
    code: str


class SemesterCreateRequest(BaseModel):
    name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True


class CourseCreateRequest(BaseModel):
    code: str
    name: str
    department_id: Optional[str] = None
    credits: int = 3
    description: str = ""


class RoleUpdateRequest(BaseModel):
    role: Role


class EnrollmentCreateRequest(BaseModel):
    student_id: str
    course_id: str
    semester_id: str


class SelfEnrollRequest(BaseModel):
    semester_id: Optional[str] = None
