# campusdesk/api/utilities/errors.py
import logging
from typing import NoReturn

from fastapi import HTTPException, status

from ...services.errors import (
    AlreadyEnrolledError,
    AlreadyMarkedError,
    InvalidDateError,
    InvalidInputError,
    InvalidStatusError,
    NoRecordsToSaveError,
    NoSemesterAvailableError,
    NotEnrolledError,
    PolicyViolationError,
    ServiceError,
    StoreUnreachableError,
)

logger = logging.getLogger(__name__)

_BAD_REQUEST = (NotEnrolledError, InvalidDateError, InvalidInputError, InvalidStatusError, NoRecordsToSaveError, NoSemesterAvailableError)
_CONFLICT = (AlreadyMarkedError, AlreadyEnrolledError)


def raise_http_error(error: Exception) -> NoReturn:
    """Translates a service layer exception into the matching HTTPException."""
    if isinstance(error, StoreUnreachableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "The data service is currently unavailable."},
        ) from error
    if not isinstance(error, ServiceError):
        raise error

    detail = error.diagnostics()
    if isinstance(error, PolicyViolationError):
        detail["remediation"] = error.remediation
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, _BAD_REQUEST):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, _CONFLICT):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_502_BAD_GATEWAY

    logger.warning(f"Request failed with {code}: {detail['message']}")
    raise HTTPException(status_code=code, detail=detail) from error
