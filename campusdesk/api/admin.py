import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .auth import CurrentUser, get_current_user, require_role
from .schemas.admin import CourseCreateRequest, DepartmentCreateRequest, RoleUpdateRequest, SemesterCreateRequest
from .utilities.errors import raise_http_error
from ..models.db_models import Course, Department, Profile, Semester
from ..services.admin_service import AdminService
from ..services.report_service import CourseReportRow, EnrollmentReportRow, ReportService, StudentReportRow
from ..services.errors import ServiceError, StoreUnreachableError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"]
)


def get_admin_service(current_user: CurrentUser = Depends(get_current_user)) -> AdminService:
    """Only admins get past this dependency."""
    profile = require_role(current_user, "admin")
    return AdminService(current_user.gateway, profile)


@router.get("/departments", response_model=List[Department])
async def list_departments(service: AdminService = Depends(get_admin_service)):
    try:
        return await service.list_departments()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.post("/departments", response_model=Department, status_code=status.HTTP_201_CREATED)
async def create_department(body: DepartmentCreateRequest, service: AdminService = Depends(get_admin_service)):
    try:
        return await service.create_department(body.name, body.code)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/semesters", response_model=List[Semester])
async def list_semesters(service: AdminService = Depends(get_admin_service)):
    try:
        return await service.list_semesters()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.post("/semesters", response_model=Semester, status_code=status.HTTP_201_CREATED)
async def create_semester(body: SemesterCreateRequest, service: AdminService = Depends(get_admin_service)):
    try:
        return await service.create_semester(body.name, body.start_date, body.end_date, body.is_active)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/courses", response_model=List[Course])
async def list_courses(service: AdminService = Depends(get_admin_service)):
    try:
        return await service.list_courses()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.post("/courses", response_model=Course, status_code=status.HTTP_201_CREATED)
async def create_course(body: CourseCreateRequest, service: AdminService = Depends(get_admin_service)):
    try:
        return await service.create_course(body.code, body.name, body.department_id, body.credits, body.description)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/users", response_model=List[Profile])
async def list_users(search: Optional[str] = Query(None), service: AdminService = Depends(get_admin_service)):
    try:
        return await service.list_users(search)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.patch("/users/{user_id}/role", response_model=Profile)
async def update_role(user_id: str, body: RoleUpdateRequest, service: AdminService = Depends(get_admin_service)):
    try:
        updated = await service.update_role(user_id, body.role)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    if updated is None:
        # Row-level security hides rows it does not let the caller update.
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found or not updatable.")
    return updated


# ===== Reports =====

def get_report_service(current_user: CurrentUser = Depends(get_current_user)) -> ReportService:
    profile = require_role(current_user, "admin")
    return ReportService(current_user.gateway, profile)


@router.get("/reports/students", response_model=List[StudentReportRow])
async def students_report(service: ReportService = Depends(get_report_service)):
    try:
        return await service.students_report()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/reports/courses", response_model=List[CourseReportRow])
async def courses_report(service: ReportService = Depends(get_report_service)):
    try:
        return await service.courses_report()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/reports/enrollments", response_model=List[EnrollmentReportRow])
async def enrollments_report(service: ReportService = Depends(get_report_service)):
    """Every enrollment, newest first."""
    try:
        return await service.enrollments_report()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
