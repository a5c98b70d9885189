from typing import Any, Dict, Optional

from ..db.gateway import StoreError, StoreUnreachableError

__all__ = [
    "ServiceError", "PolicyViolationError", "NoSemesterAvailableError", "SessionCreateFailedError",
    "SessionPolicyViolationError", "RosterUnavailableError", "NoRecordsToSaveError", "AlreadyMarkedError",
    "InvalidDateError", "NotEnrolledError", "AlreadyEnrolledError", "InvalidStatusError",
    "InvalidInputError", "StoreUnreachableError", "raise_for_store_error",
]


# --- Service layer exception classes ---
class ServiceError(Exception):
    """General exception class for the service layer. Keeps the store's diagnostics when there are any."""

    def __init__(self, message: str, store_error: Optional[StoreError] = None):
        super().__init__(message)
        self.message = message
        self.store_error = store_error

    def diagnostics(self) -> Dict[str, Any]:
        if self.store_error is None:
            return {"message": self.message, "code": None, "details": None, "hint": None}
        diag = self.store_error.diagnostics()
        diag["message"] = f"{self.message}: {self.store_error.message}"
        return diag


class PolicyViolationError(ServiceError):
    """The store's row-level security rejected the operation."""

    def __init__(self, message: str, store_error: Optional[StoreError] = None, remediation: Optional[str] = None):
        super().__init__(message, store_error)
        self.remediation = remediation or "Ask an administrator to review the row-level security policies for this table."


class NoSemesterAvailableError(ServiceError):
    pass


class SessionCreateFailedError(ServiceError):
    pass


class SessionPolicyViolationError(PolicyViolationError, SessionCreateFailedError):
    """Session insert refused by row-level security; still a failed session creation."""
    pass


class RosterUnavailableError(ServiceError):
    pass


class NoRecordsToSaveError(ServiceError):
    pass


class AlreadyMarkedError(ServiceError):
    pass


class InvalidDateError(ServiceError):
    pass


class NotEnrolledError(ServiceError):
    pass


class AlreadyEnrolledError(ServiceError):
    pass


class InvalidStatusError(ServiceError):
    pass


class InvalidInputError(ServiceError):
    pass


def raise_for_store_error(store_error: StoreError, message: str, remediation: Optional[str] = None):
    """Turns a forwarded store error into the matching service error."""
    if store_error.is_policy_violation:
        raise PolicyViolationError(message, store_error, remediation)
    raise ServiceError(message, store_error)
