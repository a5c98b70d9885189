import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .auth import CurrentUser, get_current_user, require_role
from .schemas.attendance import (
    MarkAttendanceRequest,
    MarkStatusResponse,
    OpenSessionRequest,
    SaveAttendanceRequest,
    SaveResponse,
    SessionRosterResponse,
    StudentAttendanceResponse,
)
from .utilities.errors import raise_http_error
from ..models.db_models import AttendanceRecord, Course, RosterEntry
from ..services.attendance_service import AttendanceService
from ..services.errors import ServiceError, StoreUnreachableError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/attendance",
    tags=["Attendance"]
)

STAFF_ROLES = ("admin", "faculty")


def get_attendance_service(current_user: CurrentUser = Depends(get_current_user)) -> AttendanceService:
    """A new AttendanceService per request, bound to the caller's session."""
    return AttendanceService(current_user.gateway)


# ===== Faculty / admin =====

@router.get("/courses", response_model=List[Course])
async def list_courses(
    current_user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    profile = require_role(current_user, *STAFF_ROLES)
    try:
        return await service.list_course_options(profile)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.post("/sessions", response_model=SessionRosterResponse)
async def open_session(
    body: OpenSessionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    """Finds or creates the class session for the course and date and returns its roster."""
    profile = require_role(current_user, *STAFF_ROLES)
    try:
        session_id, roster = await service.open_session(body.course_id, body.session_date, {"userId": profile.id})
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    return SessionRosterResponse(session_id=session_id, course_id=body.course_id, session_date=body.session_date, students=roster)


@router.get("/sessions/{session_id}/roster", response_model=SessionRosterResponse)
async def get_roster(
    session_id: str,
    course_id: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    """
    The roster of an existing session. The course comes from the session row;
    a course_id that does not match it is rejected.
    """
    profile = require_role(current_user, *STAFF_ROLES)
    context = {"userId": profile.id}
    try:
        session = await service.get_session(session_id, context)
        if session is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class session not found.")
        if course_id is not None and course_id != session.course_id:
            logger.warning(f"Roster request for session '{session_id}' named course '{course_id}', but it belongs to '{session.course_id}'.")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The session does not belong to this course.")
        roster: List[RosterEntry] = await service.load_roster(session_id, session.course_id, context)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    return SessionRosterResponse(session_id=session_id, course_id=session.course_id, session_date=session.session_date, students=roster)


@router.put("/sessions/{session_id}/records", response_model=SaveResponse)
async def save_records(
    session_id: str,
    body: SaveAttendanceRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    profile = require_role(current_user, *STAFF_ROLES)
    try:
        saved = await service.save_attendance(session_id, body.records, {"userId": profile.id})
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    return SaveResponse(saved=saved, message="Attendance saved!")


# ===== Student =====

@router.post("/mark", response_model=AttendanceRecord)
async def mark_attendance(
    body: MarkAttendanceRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    """Marks the calling student's attendance for today's session of the course."""
    profile = require_role(current_user, "student")
    try:
        return await service.mark_own_attendance(profile, body.course_id, body.status, body.session_date)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)


@router.get("/mark/status", response_model=MarkStatusResponse)
async def mark_status(
    course_id: str = Query(...),
    current_user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    profile = require_role(current_user, "student")
    try:
        marked = await service.is_marked_today(profile, course_id)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    return MarkStatusResponse(course_id=course_id, marked=marked)


@router.get("/me", response_model=StudentAttendanceResponse)
async def my_attendance(
    current_user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service),
):
    profile = require_role(current_user, "student")
    try:
        history, courses = await service.load_student_overview(profile)
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    return StudentAttendanceResponse(history=history, courses=courses)
