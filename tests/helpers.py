# tests/helpers.py
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union
from unittest.mock import AsyncMock

from campusdesk.db.gateway import GatewayResult, RecordStoreGateway, StoreError
from campusdesk.db.store_client import StoreClient, StoreQuery
from campusdesk.models.db_models import Profile
from campusdesk.models.redis_models import AuthSession, AuthSessionRedis, AuthUser

STORE_URL = "http://store.test"


def ok(data: Any = None, count: Optional[int] = None, status: int = 200) -> GatewayResult:
    return GatewayResult(data=data, status=status, count=count)


def fail(message: str, code: Optional[str] = None, status: int = 400, details: Optional[str] = None, hint: Optional[str] = None) -> GatewayResult:
    return GatewayResult(error=StoreError(message=message, code=code, status=status, details=details, hint=hint), status=status)


def rls_denied(table: str = "class_sessions") -> GatewayResult:
    return fail(f'new row violates row-level security policy for table "{table}"', code="42501", status=403)


class ScriptedGateway:
    """
    A real RecordStoreGateway (queries are built for real) whose execute()
    answers from a script keyed by call label and records every call.
    A label queued with several results answers them in order, and keeps
    repeating the last one. A queued exception is raised instead.
    """

    def __init__(self):
        store = StoreClient(http_client=AsyncMock(), base_url=STORE_URL, api_key="anon-key")
        self.gateway = RecordStoreGateway(store)
        self.responses: Dict[str, List[Union[GatewayResult, Exception]]] = {}
        self.calls: List[Tuple[str, StoreQuery, Dict[str, Any]]] = []
        self.gateway.execute = AsyncMock(side_effect=self._execute)

    def on(self, label: str, *results: Union[GatewayResult, Exception]) -> "ScriptedGateway":
        self.responses.setdefault(label, []).extend(results)
        return self

    async def _execute(self, query: StoreQuery, label: str, context: Optional[Dict[str, Any]] = None) -> GatewayResult:
        self.calls.append((label, query, context or {}))
        queued = self.responses.get(label)
        if not queued:
            raise AssertionError(f"Unexpected store call: {label} ({query.describe()})")
        result = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def labels(self) -> List[str]:
        return [label for label, _, _ in self.calls]

    def query(self, label: str) -> StoreQuery:
        for called, query, _ in self.calls:
            if called == label:
                return query
        raise AssertionError(f"No store call labelled {label}")

    def count(self, label: str) -> int:
        return self.labels.count(label)


def make_stored_session(profile: Optional[Profile], user_id: Optional[str] = None, expires_at: Optional[datetime] = None, refresh_token: Optional[str] = "refresh-token") -> AuthSessionRedis:
    user_id = user_id or profile.id
    now = datetime.now(timezone.utc)
    return AuthSessionRedis(
        auth=AuthSession(
            access_token=f"access-{user_id}",
            refresh_token=refresh_token,
            expires_at=expires_at,
            user=AuthUser(id=user_id, email=profile.email if profile else None),
        ),
        profile=profile,
        session_id=uuid.uuid4(),
        session_start_time=now,
        session_end_time=now + timedelta(hours=1),
    )


class InMemorySessions:
    """Stands in for RedisClient: auth sessions kept in a dict, every key with the same TTL."""

    def __init__(self, ttl: int = 3600):
        self.sessions: Dict[str, AuthSessionRedis] = {}
        self.ttl = ttl

    def add(self, session: AuthSessionRedis) -> AuthSessionRedis:
        self.sessions[session.user_id] = session
        return session

    async def save_auth_session(self, session: AuthSessionRedis, ttl: int):
        self.sessions[session.user_id] = session.model_copy(deep=True)

    async def get_auth_session(self, user_id: str) -> Optional[AuthSessionRedis]:
        stored = self.sessions.get(user_id)
        return stored.model_copy(deep=True) if stored else None

    async def delete_auth_session(self, user_id: str) -> int:
        return 1 if self.sessions.pop(user_id, None) else 0

    async def get_session_ttl(self, user_id: str) -> int:
        return self.ttl if user_id in self.sessions else -2

    async def iter_auth_sessions(self):
        for session in list(self.sessions.values()):
            yield session.model_copy(deep=True)
