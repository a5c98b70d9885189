import pytest
from unittest.mock import AsyncMock, MagicMock

from campusdesk.db.schema import SchemaInstaller, UNIQUE_CONSTRAINTS


class FakeAcquire:
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        return self.connection

    async def __aexit__(self, *exc):
        return False


def make_pool(duplicates=None):
    connection = MagicMock()
    connection.fetch = AsyncMock(return_value=duplicates or [])
    connection.execute = AsyncMock()
    connection.transaction = MagicMock(return_value=FakeAcquire(None))
    pool = MagicMock()
    pool.acquire = MagicMock(side_effect=lambda: FakeAcquire(connection))
    return pool, connection


@pytest.mark.asyncio
class TestSchemaInstaller:

    async def test_installs_every_unique_index(self):
        pool, connection = make_pool()

        ensured = await SchemaInstaller(pool).install_constraints()

        assert ensured == [name for name, _, _ in UNIQUE_CONSTRAINTS]
        statements = [call.args[0] for call in connection.execute.await_args_list]
        assert "CREATE UNIQUE INDEX IF NOT EXISTS class_sessions_course_date_key ON class_sessions (course_id, session_date);" in statements

    async def test_refuses_while_duplicate_sessions_exist(self):
        """Scenario: Two sessions already exist for one course and date; nothing is created."""
        pool, connection = make_pool(duplicates=[{"course_id": "c1", "session_date": "2024-09-10", "copies": 2}])

        with pytest.raises(RuntimeError, match="c1@2024-09-10"):
            await SchemaInstaller(pool).install_constraints()

        connection.execute.assert_not_awaited()
