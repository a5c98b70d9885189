from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .auth import CurrentUser, get_current_user, require_role
from .schemas.admin import EnrollmentCreateRequest, SelfEnrollRequest
from .utilities.errors import raise_http_error
from ..models.db_models import Enrollment
from ..services.enrollment_service import CourseCatalog, EnrollmentFormOptions, EnrollmentService
from ..services.errors import ServiceError, StoreUnreachableError

router = APIRouter(
    prefix="/enrollments",
    tags=["Enrollments"]
)


def get_enrollment_service(current_user: CurrentUser = Depends(get_current_user)) -> EnrollmentService:
    profile = require_role(current_user, "admin", "faculty", "student")
    return EnrollmentService(current_user.gateway, profile)


# ===== Admin =====

@router.get("", response_model=List[Dict[str, Any]])
async def list_enrollments(
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "admin")
    try:
        return await service.list_enrollments()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/options", response_model=EnrollmentFormOptions)
async def enrollment_options(
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "admin")
    try:
        return await service.load_form_options()
    except StoreUnreachableError as e:
        raise_http_error(e)


@router.post("", response_model=Enrollment, status_code=status.HTTP_201_CREATED)
async def create_enrollment(
    body: EnrollmentCreateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "admin")
    try:
        return await service.enroll(body.student_id, body.course_id, body.semester_id)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.delete("/{enrollment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_enrollment(
    enrollment_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "admin")
    try:
        await service.remove(enrollment_id)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== Student =====

@router.get("/catalog", response_model=CourseCatalog)
async def course_catalog(
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "student")
    try:
        return await service.load_catalog()
    except StoreUnreachableError as e:
        raise_http_error(e)


@router.post("/catalog/{course_id}", response_model=Enrollment, status_code=status.HTTP_201_CREATED)
async def enroll_self(
    course_id: str,
    body: SelfEnrollRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "student")
    try:
        return await service.self_enroll(course_id, body.semester_id)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/me", response_model=List[Dict[str, Any]])
async def my_enrollments(
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "student")
    try:
        return await service.list_my_enrollments()
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.delete("/me/{enrollment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unenroll_self(
    enrollment_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    require_role(current_user, "student")
    try:
        removed = await service.unenroll_self(enrollment_id)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Enrollment not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
