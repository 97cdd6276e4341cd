"""PostgreSQL repository implementation for data persistence."""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
import psycopg2
from psycopg2 import errors, sql
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool
from repo_tracker.domain.errors import DuplicateRepositoryError, UserNotFoundError
from repo_tracker.domain.repository_interface import IRepositoryStorage
from repo_tracker.domain.models import RepositoryRecord, check_refreshable_fields


logger = logging.getLogger(__name__)


RECORD_COLUMNS = (
    "user_id", "owner", "name", "full_name", "url", "description",
    "stars", "forks", "open_issues", "language", "default_branch",
    "source_created_at", "source_updated_at", "last_refreshed",
)


def create_schema(conn) -> None:
    """Create database schema.

    Schema design considerations:
    - users owns repositories; deleting a user removes their records
    - a user tracks a path at most once, compared case-insensitively
      because GitHub paths are case-insensitive
    - user_id is indexed since every query is scoped by owner
    - source_created_at/source_updated_at come from GitHub, last_refreshed
      is set locally on each successful refresh
    """
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id SERIAL PRIMARY KEY,
                email VARCHAR(320) NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS repositories (
                id SERIAL PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                owner VARCHAR(255) NOT NULL,
                name VARCHAR(255) NOT NULL,
                full_name VARCHAR(511) NOT NULL,
                url TEXT NOT NULL,
                description TEXT,
                stars INTEGER NOT NULL DEFAULT 0,
                forks INTEGER NOT NULL DEFAULT 0,
                open_issues INTEGER NOT NULL DEFAULT 0,
                language VARCHAR(255),
                default_branch VARCHAR(255) NOT NULL DEFAULT 'main',
                source_created_at TIMESTAMPTZ,
                source_updated_at TIMESTAMPTZ,
                last_refreshed TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_repositories_user_full_name
            ON repositories(user_id, LOWER(full_name))
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_repositories_user_id
            ON repositories(user_id)
        """)

        conn.commit()
        logger.info("Database schema created successfully")

    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating schema: {e}")
        raise
    finally:
        cursor.close()


def row_to_record(row: Dict[str, Any]) -> RepositoryRecord:
    """Map a RealDictCursor row to a RepositoryRecord."""
    return RepositoryRecord(
        repo_id=row["id"],
        **{column: row[column] for column in RECORD_COLUMNS}
    )


class PostgresRepositoryStorage(IRepositoryStorage):
    """PostgreSQL implementation of repository storage.

    psycopg2 is blocking, so each operation runs in a worker thread with
    its own pooled connection and commits on its own. The executor has one
    worker per pooled connection because ThreadedConnectionPool raises
    PoolError instead of waiting when every connection is borrowed.
    """

    def __init__(self, connection_string: str, max_connections: int = 5):
        """Initialize PostgreSQL connection pool.

        Args:
            connection_string: PostgreSQL connection string
            max_connections: Upper bound of pooled connections
        """
        self._pool = ThreadedConnectionPool(1, max_connections, connection_string)
        self._executor = ThreadPoolExecutor(
            max_workers=max_connections,
            thread_name_prefix="postgres"
        )
        logger.info("Connected to PostgreSQL database")

    @contextmanager
    def _cursor(self) -> Iterator[RealDictCursor]:
        """Borrow a connection and yield a cursor inside one transaction."""
        conn = self._pool.getconn()
        try:
            cursor = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()
        finally:
            self._pool.putconn(conn)

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)

    def _create(self, record: RepositoryRecord) -> RepositoryRecord:
        query = sql.SQL(
            "INSERT INTO repositories ({columns}) VALUES ({values}) RETURNING *"
        ).format(
            columns=sql.SQL(", ").join(map(sql.Identifier, RECORD_COLUMNS)),
            values=sql.SQL(", ").join(sql.Placeholder() * len(RECORD_COLUMNS))
        )

        try:
            with self._cursor() as cursor:
                cursor.execute(query, [getattr(record, column) for column in RECORD_COLUMNS])
                return row_to_record(cursor.fetchone())
        except errors.UniqueViolation:
            raise DuplicateRepositoryError(record.full_name)
        except errors.ForeignKeyViolation:
            raise UserNotFoundError(record.user_id)

    def _find_by_user(self, user_id: int) -> List[RepositoryRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM repositories WHERE user_id = %s ORDER BY id",
                (user_id,)
            )
            return [row_to_record(row) for row in cursor.fetchall()]

    def _find_by_id_and_user(self, record_id: int, user_id: int) -> Optional[RepositoryRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM repositories WHERE id = %s AND user_id = %s",
                (record_id, user_id)
            )
            row = cursor.fetchone()
            return row_to_record(row) if row else None

    def _update_by_id(self, record_id: int, fields: Dict[str, Any]) -> Optional[RepositoryRecord]:
        check_refreshable_fields(fields)

        columns = list(fields)
        query = sql.SQL("UPDATE repositories SET {assignments} WHERE id = %s RETURNING *").format(
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(column)) for column in columns
            )
        )

        try:
            with self._cursor() as cursor:
                cursor.execute(query, [fields[column] for column in columns] + [record_id])
                row = cursor.fetchone()
                return row_to_record(row) if row else None
        except errors.UniqueViolation:
            raise DuplicateRepositoryError(fields.get("full_name", str(record_id)))

    def _delete_by_id(self, record_id: int, user_id: int) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM repositories WHERE id = %s AND user_id = %s",
                (record_id, user_id)
            )
            return cursor.rowcount

    async def create(self, record: RepositoryRecord) -> RepositoryRecord:
        """Insert a new record.

        Raises:
            DuplicateRepositoryError: If the user already tracks this path
            UserNotFoundError: If the owning user does not exist
        """
        return await self._run(self._create, record)

    async def find_by_user(self, user_id: int) -> List[RepositoryRecord]:
        return await self._run(self._find_by_user, user_id)

    async def find_by_id_and_user(
        self,
        record_id: int,
        user_id: int
    ) -> Optional[RepositoryRecord]:
        return await self._run(self._find_by_id_and_user, record_id, user_id)

    async def update_by_id(
        self,
        record_id: int,
        fields: Dict[str, Any]
    ) -> Optional[RepositoryRecord]:
        """Overwrite refreshable columns of a record.

        Only columns a refresh may change are accepted; anything else
        raises ValidationError before touching the database.
        """
        return await self._run(self._update_by_id, record_id, fields)

    async def delete_by_id(self, record_id: int, user_id: int) -> int:
        return await self._run(self._delete_by_id, record_id, user_id)

    async def close(self) -> None:
        """Close all pooled connections."""
        self._executor.shutdown(wait=True)
        if not self._pool.closed:
            self._pool.closeall()
            logger.info("Closed PostgreSQL connection pool")


def connect(connection_string: str) -> "psycopg2.extensions.connection":
    """Open a plain connection for schema management scripts."""
    conn = psycopg2.connect(connection_string)
    conn.autocommit = False
    return conn
