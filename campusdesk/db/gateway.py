import logging
from typing import Any, Dict, List, Optional
import httpx
from pydantic import BaseModel

from .store_client import StoreClient, StoreQuery

logger = logging.getLogger(__name__)

POLICY_VIOLATION_CODE = "42501"
UNIQUE_VIOLATION_CODE = "23505"
NO_ROWS_CODE = "PGRST116"


class StoreUnreachableError(Exception):
    """Raised when the record store could not be reached at all (network, timeout)."""
    pass


class StoreError(BaseModel):
    """The structured error the record store returned for a call."""
    message: str
    code: Optional[str] = None
    details: Optional[str] = None
    hint: Optional[str] = None
    status: Optional[int] = None

    @property
    def is_policy_violation(self) -> bool:
        message = (self.message or "").lower()
        return self.code == POLICY_VIOLATION_CODE or "row-level security" in message or "rls" in message.split()

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION_CODE or "duplicate" in (self.message or "").lower()

    @property
    def is_no_rows(self) -> bool:
        return self.code == NO_ROWS_CODE

    def diagnostics(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details, "hint": self.hint}

    @classmethod
    def from_response(cls, response: httpx.Response) -> "StoreError":
        body: Any = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            return cls(message=response.text or f"HTTP {response.status_code}", status=response.status_code)
        code = body.get("code")
        details = body.get("details")
        return cls(
            message=body.get("message") or body.get("msg") or body.get("error_description") or f"HTTP {response.status_code}",
            code=str(code) if code is not None else None,
            details=str(details) if details is not None else None,
            hint=body.get("hint"),
            status=response.status_code,
        )


class GatewayResult(BaseModel):
    """Either data (plus count/status) or a StoreError, never silently both."""
    data: Any = None
    error: Optional[StoreError] = None
    status: Optional[int] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def rows(self) -> List[Dict[str, Any]]:
        if self.data is None:
            return []
        if isinstance(self.data, list):
            return self.data
        return [self.data]

    def first(self) -> Optional[Dict[str, Any]]:
        rows = self.rows()
        return rows[0] if rows else None


def _parse_count(content_range: Optional[str]) -> Optional[int]:
    # Content-Range looks like "0-24/3573" or "*/0"
    if not content_range or "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class RecordStoreGateway:
    """
    Executes record store calls and makes sure every error the store returns
    is logged with its message, code, details and hint before it reaches the
    caller. It never retries and never recovers: the caller decides what an
    error means.
    """

    def __init__(self, store: StoreClient):
        self.store = store

    def table(self, name: str) -> StoreQuery:
        return self.store.table(name)

    async def execute(self, operation: StoreQuery, label: str, context: Optional[Dict[str, Any]] = None) -> GatewayResult:
        context = context or {}
        try:
            response = await operation.send()
        except httpx.RequestError as e:
            logger.error(f"[store] {label} threw ({operation.describe()}): {e!r} context={context}", exc_info=True)
            raise StoreUnreachableError(f"The record store could not be reached ({label}).") from e

        count = _parse_count(response.headers.get("content-range"))

        if response.is_success:
            data = None
            if operation.method != "HEAD" and response.content:
                data = response.json()
            return GatewayResult(data=data, status=response.status_code, count=count)

        error = StoreError.from_response(response)
        logger.error(
            f"[store] {label} ({operation.describe()}) context={context} "
            f"error={error.diagnostics()} status={response.status_code} count={count}"
        )
        return GatewayResult(error=error, status=response.status_code, count=count)
