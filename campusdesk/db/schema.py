import asyncio
import logging
from typing import List, Tuple
import asyncpg

logger = logging.getLogger(__name__)

# (index name, table, columns). These back the conflict targets the
# services upsert on and stop concurrent callers from creating two class
# sessions for the same course and date.
UNIQUE_CONSTRAINTS: List[Tuple[str, str, Tuple[str, ...]]] = [
    ("class_sessions_course_date_key", "class_sessions", ("course_id", "session_date")),
    ("attendance_session_student_key", "attendance", ("session_id", "student_id")),
    ("grades_assignment_student_key", "grades", ("assignment_id", "student_id")),
    ("enrollments_student_course_semester_key", "enrollments", ("student_id", "course_id", "semester_id")),
]

DUPLICATE_SESSIONS_QUERY = """
    SELECT course_id, session_date, COUNT(*) AS copies
    FROM class_sessions
    GROUP BY course_id, session_date
    HAVING COUNT(*) > 1;
"""


class SchemaInstaller:
    """
    Installs the uniqueness constraints the record store relies on.
    Needs a direct Postgres connection (DATABASE_URL); it is an admin tool,
    the request path never uses it.
    """

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def find_duplicate_sessions(self) -> List[asyncpg.Record]:
        """Lists (course_id, session_date) pairs that already have more than one session."""
        async with self._pool.acquire() as connection:
            return await connection.fetch(DUPLICATE_SESSIONS_QUERY)

    async def install_constraints(self) -> List[str]:
        """
        Creates the unique indexes that are missing. Refuses to touch
        class_sessions while duplicates exist, since the index build would fail.
        Returns the names of the indexes that were ensured.
        """
        duplicates = await self.find_duplicate_sessions()
        if duplicates:
            pairs = ", ".join(f"{row['course_id']}@{row['session_date']}" for row in duplicates)
            raise RuntimeError(f"Duplicate class sessions must be merged before the constraint can be added: {pairs}")

        ensured = []
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                for index_name, table, columns in UNIQUE_CONSTRAINTS:
                    query = f"CREATE UNIQUE INDEX IF NOT EXISTS {index_name} ON {table} ({', '.join(columns)});"
                    await connection.execute(query)
                    logger.info(f"Unique index '{index_name}' ensured on {table}({', '.join(columns)}).")
                    ensured.append(index_name)
        return ensured


async def install_constraints(database_url: str) -> List[str]:
    """Opens a short-lived pool, installs the constraints and closes the pool."""
    pool = await asyncpg.create_pool(dsn=database_url, min_size=1, max_size=2)
    try:
        return await SchemaInstaller(pool).install_constraints()
    finally:
        await pool.close()


def main():
    """Console entry point: installs the constraints against DATABASE_URL."""
    from ..config.config import settings
    from ..logging.logging_config import setup_logging

    setup_logging()
    if not settings.DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set.")
    ensured = asyncio.run(install_constraints(settings.DATABASE_URL))
    logger.info(f"{len(ensured)} unique indexes in place.")


if __name__ == "__main__":
    main()
