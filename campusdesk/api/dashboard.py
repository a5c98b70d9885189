from fastapi import APIRouter, Depends

from .auth import CurrentUser, get_current_user, require_role
from .utilities.errors import raise_http_error
from ..services.dashboard_service import DashboardService, DashboardStats
from ..services.errors import StoreUnreachableError

router = APIRouter(
    prefix="/dashboard",
    tags=["Dashboard"]
)


def get_dashboard_service(current_user: CurrentUser = Depends(get_current_user)) -> DashboardService:
    return DashboardService(current_user.gateway)


@router.get("", response_model=DashboardStats)
async def dashboard(
    current_user: CurrentUser = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
):
    profile = require_role(current_user, "admin", "faculty", "student")
    try:
        return await service.load(profile)
    except StoreUnreachableError as e:
        raise_http_error(e)
