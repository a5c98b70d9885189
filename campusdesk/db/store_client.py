import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union, TYPE_CHECKING
import httpx

if TYPE_CHECKING:
    from ..modules.auth_client import AuthClient

logger = logging.getLogger(__name__)

_RESERVED_CHARS = set(',()":. ')


def _format_value(value: Any) -> str:
    """Renders a Python value the way PostgREST filters expect it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _format_list_item(value: Any) -> str:
    text = _format_value(value)
    if any(ch in _RESERVED_CHARS for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


class StoreQuery:
    """
    A single PostgREST request being built for one table.

    Filters and modifiers are chained the way the JS client does it:
    store.table("class_sessions").select("id").eq("course_id", cid).limit(1)
    Nothing is sent until the gateway executes the query.
    """

    def __init__(self, client: "StoreClient", table: str):
        self._client = client
        self.table = table
        self.method = "GET"
        self.params: List[Tuple[str, str]] = []
        self.prefer: List[str] = []
        self.body: Any = None
        self.single_row = False

    # ===== Reads =====

    def select(self, columns: str = "*", count: Optional[str] = None, head: bool = False) -> "StoreQuery":
        """Selects columns; embedded joins use PostgREST syntax, e.g. 'student:profiles(id,full_name)'."""
        self._set_param("select", "".join(columns.split()))
        if count:
            self.prefer.append(f"count={count}")
        if head:
            self.method = "HEAD"
        return self

    def eq(self, column: str, value: Any) -> "StoreQuery":
        if value is None:
            self.params.append((column, "is.null"))
        else:
            self.params.append((column, f"eq.{_format_value(value)}"))
        return self

    def neq(self, column: str, value: Any) -> "StoreQuery":
        self.params.append((column, f"neq.{_format_value(value)}"))
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "StoreQuery":
        items = ",".join(_format_list_item(v) for v in values)
        self.params.append((column, f"in.({items})"))
        return self

    def order(self, column: str, ascending: bool = True) -> "StoreQuery":
        self._set_param("order", f"{column}.{'asc' if ascending else 'desc'}")
        return self

    def limit(self, count: int) -> "StoreQuery":
        self._set_param("limit", str(count))
        return self

    def single(self) -> "StoreQuery":
        """Asks for exactly one row; zero or many rows come back as an error (PGRST116)."""
        self.single_row = True
        return self

    # ===== Writes =====

    def insert(self, rows: Union[Dict[str, Any], List[Dict[str, Any]]], returning: bool = True) -> "StoreQuery":
        self.method = "POST"
        self.body = rows
        self.prefer.append("return=representation" if returning else "return=minimal")
        return self

    def upsert(self, rows: Union[Dict[str, Any], List[Dict[str, Any]]], on_conflict: str, returning: bool = False) -> "StoreQuery":
        """Insert-or-update keyed by the columns in on_conflict, e.g. 'session_id,student_id'."""
        self.method = "POST"
        self.body = rows
        self._set_param("on_conflict", on_conflict)
        self.prefer.append("resolution=merge-duplicates")
        self.prefer.append("return=representation" if returning else "return=minimal")
        return self

    def update(self, values: Dict[str, Any], returning: bool = True) -> "StoreQuery":
        self.method = "PATCH"
        self.body = values
        self.prefer.append("return=representation" if returning else "return=minimal")
        return self

    def delete(self, returning: bool = False) -> "StoreQuery":
        self.method = "DELETE"
        if returning:
            self.prefer.append("return=representation")
        return self

    # ===== Sending =====

    def _set_param(self, key: str, value: str):
        self.params = [(k, v) for k, v in self.params if k != key]
        self.params.append((key, value))

    def build_headers(self) -> Dict[str, str]:
        headers = self._client.headers()
        if self.prefer:
            headers["Prefer"] = ",".join(self.prefer)
        if self.single_row:
            headers["Accept"] = "application/vnd.pgrst.object+json"
        return headers

    def describe(self) -> str:
        return f"{self.method} {self.table}"

    async def send(self) -> httpx.Response:
        """Sends the request; transport errors propagate as httpx.RequestError."""
        return await self._client.http_client.request(
            self.method,
            self._client.table_url(self.table),
            params=self.params,
            headers=self.build_headers(),
            json=self.body if self.body is not None else None,
        )


class StoreClient:
    """
    Tabular access to the hosted Postgres through its PostgREST endpoint.

    The HTTP client is shared and owned by the caller. When an AuthClient is
    given, its current access token is sent so row-level security applies to
    the signed-in user; otherwise the anonymous key is used.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str, api_key: str, auth_client: Optional["AuthClient"] = None):
        self.http_client = http_client
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._api_key = api_key
        self._auth_client = auth_client

    def table_url(self, table: str) -> str:
        return f"{self._rest_url}/{table}"

    def headers(self) -> Dict[str, str]:
        token = self._auth_client.access_token if self._auth_client else None
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token or self._api_key}",
        }

    def table(self, name: str) -> StoreQuery:
        return StoreQuery(self, name)
