import pytest
from datetime import date

from campusdesk.services.errors import (
    NoSemesterAvailableError,
    PolicyViolationError,
    SessionCreateFailedError,
    SessionPolicyViolationError,
)
from campusdesk.services.session_service import (
    ActiveSemesterStrategy,
    EnrollmentSemesterStrategy,
    KnownSemesterStrategy,
    SessionResolutionEngine,
)
from tests.helpers import fail, ok, rls_denied

COURSE_ID = "course-c"
SESSION_DATE = date(2024, 9, 10)

FIND = "class_sessions:getByCourseAndDate"
INSERT = "class_sessions:insert"
ENROLLMENT_SEMESTER = "enrollments:getSemesterForSession"
ACTIVE_SEMESTER = "semesters:getActiveForSession"


@pytest.mark.asyncio
class TestSessionResolutionEngine:

    async def test_existing_session_is_returned_without_creating(self, store):
        """Scenario: A session already exists for (course, date); its id comes back and nothing is inserted."""
        store.on(FIND, ok([{"id": "sess-1"}]))
        engine = SessionResolutionEngine(store.gateway)

        session_id = await engine.resolve_session(COURSE_ID, SESSION_DATE)

        assert session_id == "sess-1"
        assert store.labels == [FIND]
        query = store.query(FIND)
        assert ("course_id", "eq.course-c") in query.params
        assert ("session_date", "eq.2024-09-10") in query.params
        assert ("limit", "1") in query.params

    async def test_new_session_is_stamped_with_enrollment_semester(self, store):
        """Scenario: No session yet and students enrolled in 'Fall 2024'; exactly one session is created with that semester."""
        store.on(FIND, ok([]))
        store.on(ENROLLMENT_SEMESTER, ok([{"semester_id": "fall-2024"}]))
        store.on(INSERT, ok([{"id": "sess-new"}], status=201))
        engine = SessionResolutionEngine(store.gateway)

        session_id = await engine.resolve_session(COURSE_ID, SESSION_DATE)

        assert session_id == "sess-new"
        assert store.count(INSERT) == 1
        assert ACTIVE_SEMESTER not in store.labels
        assert store.query(INSERT).body == {"course_id": COURSE_ID, "session_date": "2024-09-10", "semester_id": "fall-2024"}

    async def test_active_semester_is_used_when_no_enrollments(self, store):
        """Scenario: No enrollments for the course but one active semester; the session is stamped with the active semester."""
        store.on(FIND, ok([]))
        store.on(ENROLLMENT_SEMESTER, ok([]))
        store.on(ACTIVE_SEMESTER, ok([{"id": "spring-2025"}]))
        store.on(INSERT, ok([{"id": "sess-new"}], status=201))
        engine = SessionResolutionEngine(store.gateway)

        await engine.resolve_session(COURSE_ID, SESSION_DATE)

        assert store.query(INSERT).body["semester_id"] == "spring-2025"
        assert ("is_active", "eq.true") in store.query(ACTIVE_SEMESTER).params

    async def test_no_semester_fails_and_creates_nothing(self, store):
        """Scenario: Neither enrollments nor an active semester; NoSemesterAvailable is raised and no insert happens."""
        store.on(FIND, ok([]))
        store.on(ENROLLMENT_SEMESTER, ok([]))
        store.on(ACTIVE_SEMESTER, ok([]))
        engine = SessionResolutionEngine(store.gateway)

        with pytest.raises(NoSemesterAvailableError, match="No semester found for this course"):
            await engine.resolve_session(COURSE_ID, SESSION_DATE)

        assert INSERT not in store.labels

    async def test_failed_enrollment_lookup_falls_through_to_active_semester(self, store):
        """Scenario: The enrollment lookup errors (not a policy issue); it counts as not found and the next strategy runs."""
        store.on(FIND, ok([]))
        store.on(ENROLLMENT_SEMESTER, fail("timeout reading enrollments", code="57014", status=500))
        store.on(ACTIVE_SEMESTER, ok([{"id": "spring-2025"}]))
        store.on(INSERT, ok([{"id": "sess-new"}], status=201))
        engine = SessionResolutionEngine(store.gateway)

        assert await engine.resolve_session(COURSE_ID, SESSION_DATE) == "sess-new"

    async def test_policy_violation_on_lookup_propagates(self, store):
        """Scenario: Row-level security refuses the session lookup; the caller gets a PolicyViolationError."""
        store.on(FIND, rls_denied("class_sessions"))
        engine = SessionResolutionEngine(store.gateway)

        with pytest.raises(PolicyViolationError) as exc_info:
            await engine.resolve_session(COURSE_ID, SESSION_DATE)
        assert "class_sessions" in exc_info.value.remediation

    async def test_resolving_twice_returns_same_id(self, store):
        """Scenario: Idempotence; the second call finds the session the first one created."""
        store.on(FIND, ok([]), ok([{"id": "sess-new"}]))
        store.on(ENROLLMENT_SEMESTER, ok([{"semester_id": "fall-2024"}]))
        store.on(INSERT, ok([{"id": "sess-new"}], status=201))
        engine = SessionResolutionEngine(store.gateway)

        first = await engine.resolve_session(COURSE_ID, SESSION_DATE)
        second = await engine.resolve_session(COURSE_ID, SESSION_DATE)

        assert first == second == "sess-new"
        assert store.count(INSERT) == 1

    async def test_insert_policy_violation_is_a_session_create_failure_with_remediation(self, store):
        """Scenario: RLS rejects the insert; the error is both a policy violation and a failed session creation."""
        store.on(FIND, ok([]))
        store.on(ENROLLMENT_SEMESTER, ok([{"semester_id": "fall-2024"}]))
        store.on(INSERT, rls_denied("class_sessions"))
        engine = SessionResolutionEngine(store.gateway)

        with pytest.raises(SessionPolicyViolationError) as exc_info:
            await engine.resolve_session(COURSE_ID, SESSION_DATE)

        error = exc_info.value
        assert isinstance(error, SessionCreateFailedError)
        assert error.store_error.code == "42501"
        assert "INSERT" in error.remediation

    async def test_unique_violation_on_insert_is_not_retried(self, store):
        """Scenario: A concurrent caller won the race; the 23505 surfaces as SessionCreateFailed and no retry happens."""
        store.on(FIND, ok([]))
        store.on(ENROLLMENT_SEMESTER, ok([{"semester_id": "fall-2024"}]))
        store.on(INSERT, fail('duplicate key value violates unique constraint "class_sessions_course_date_key"', code="23505", status=409))
        engine = SessionResolutionEngine(store.gateway)

        with pytest.raises(SessionCreateFailedError) as exc_info:
            await engine.resolve_session(COURSE_ID, SESSION_DATE)

        assert exc_info.value.diagnostics()["code"] == "23505"
        assert store.count(INSERT) == 1
        assert store.count(FIND) == 1

    async def test_insert_without_returned_id_fails(self, store):
        """Scenario: The insert succeeds but no row comes back; creation is reported as failed."""
        store.on(FIND, ok([]))
        store.on(ENROLLMENT_SEMESTER, ok([{"semester_id": "fall-2024"}]))
        store.on(INSERT, ok([], status=201))
        engine = SessionResolutionEngine(store.gateway)

        with pytest.raises(SessionCreateFailedError, match="Failed to create or find class session"):
            await engine.resolve_session(COURSE_ID, SESSION_DATE)


@pytest.mark.asyncio
class TestSemesterStrategies:

    async def test_strategies_are_tried_in_order_and_stop_at_first_hit(self, store):
        """Scenario: The first strategy answers; later strategies are never consulted."""
        engine = SessionResolutionEngine(store.gateway, [KnownSemesterStrategy("sem-known"), ActiveSemesterStrategy(store.gateway)])

        assert await engine.resolve_semester(COURSE_ID) == "sem-known"
        assert store.calls == []

    async def test_known_strategy_without_semester_falls_through(self, store):
        """Scenario: A known-semester strategy holding None counts as not found."""
        store.on(ACTIVE_SEMESTER, ok([{"id": "spring-2025"}]))
        engine = SessionResolutionEngine(store.gateway, [KnownSemesterStrategy(None), ActiveSemesterStrategy(store.gateway)])

        assert await engine.resolve_semester(COURSE_ID) == "spring-2025"

    async def test_enrollment_strategy_reads_first_enrollment(self, store):
        """Scenario: The enrollment strategy asks for one enrollment of the course and returns its semester."""
        store.on(ENROLLMENT_SEMESTER, ok([{"semester_id": "fall-2024"}]))

        semester_id = await EnrollmentSemesterStrategy(store.gateway).find(COURSE_ID, {})

        assert semester_id == "fall-2024"
        query = store.query(ENROLLMENT_SEMESTER)
        assert ("select", "semester_id") in query.params
        assert ("course_id", "eq.course-c") in query.params

    async def test_empty_strategy_list_raises(self, store):
        """Scenario: With no strategies at all there is never a semester."""
        engine = SessionResolutionEngine(store.gateway, [])
        with pytest.raises(NoSemesterAvailableError):
            await engine.resolve_semester(COURSE_ID)
