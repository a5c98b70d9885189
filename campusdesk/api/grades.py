from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, status

from .auth import CurrentUser, get_current_user, require_role
from .schemas.attendance import SaveResponse
from .schemas.grades import AssignmentCreateRequest, SaveGradesRequest
from .utilities.errors import raise_http_error
from ..models.db_models import Assignment, Course, GradeRosterEntry
from ..services.errors import ServiceError, StoreUnreachableError
from ..services.grade_service import GradeService

router = APIRouter(
    prefix="/grades",
    tags=["Grades"]
)

STAFF_ROLES = ("admin", "faculty")


def get_grade_service(current_user: CurrentUser = Depends(get_current_user)) -> GradeService:
    return GradeService(current_user.gateway)


@router.get("/courses", response_model=List[Course])
async def list_courses(
    current_user: CurrentUser = Depends(get_current_user),
    service: GradeService = Depends(get_grade_service),
):
    profile = require_role(current_user, *STAFF_ROLES)
    try:
        return await service.list_course_options(profile)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/courses/{course_id}/assignments", response_model=List[Assignment])
async def list_assignments(
    course_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: GradeService = Depends(get_grade_service),
):
    require_role(current_user, *STAFF_ROLES)
    try:
        return await service.list_assignments(course_id)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.post("/courses/{course_id}/assignments", response_model=Assignment, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    course_id: str,
    body: AssignmentCreateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: GradeService = Depends(get_grade_service),
):
    require_role(current_user, *STAFF_ROLES)
    try:
        return await service.create_assignment(course_id, body.title, body.max_marks, body.due_date)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/assignments/{assignment_id}/grades", response_model=List[GradeRosterEntry])
async def get_grade_roster(
    assignment_id: str,
    course_id: str = Query(...),
    current_user: CurrentUser = Depends(get_current_user),
    service: GradeService = Depends(get_grade_service),
):
    require_role(current_user, *STAFF_ROLES)
    try:
        return await service.load_grade_roster(assignment_id, course_id)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.put("/assignments/{assignment_id}/grades", response_model=SaveResponse)
async def save_grades(
    assignment_id: str,
    body: SaveGradesRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: GradeService = Depends(get_grade_service),
):
    require_role(current_user, *STAFF_ROLES)
    try:
        saved = await service.save_grades(assignment_id, body.grades)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    return SaveResponse(saved=saved, message="Grades saved successfully!")


@router.get("/me", response_model=List[Dict[str, Any]])
async def my_grades(
    current_user: CurrentUser = Depends(get_current_user),
    service: GradeService = Depends(get_grade_service),
):
    profile = require_role(current_user, "student")
    try:
        return await service.list_student_grades(profile)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
