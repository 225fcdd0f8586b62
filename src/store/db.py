"""Relational store for course content and user reports.

Supports two backends:
- PostgreSQL (production, database_url = postgres://...)
- SQLite (local development and tests, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite). No ORM.
Statements are written with %s placeholders and adapted to ? for SQLite.

The Database instance owns its connection pool; the entry point creates
one per process and closes it on shutdown.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Union

logger = logging.getLogger(__name__)

PG_UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: BaseException) -> bool:
    """True if error is a unique-constraint violation on either backend."""
    if getattr(error, "pgcode", None) == PG_UNIQUE_VIOLATION:
        return True
    if isinstance(error, sqlite3.IntegrityError):
        return "UNIQUE constraint failed" in str(error)
    return False


class Transaction:
    """Statement executor bound to one open transaction."""

    def __init__(self, conn: Any, is_postgres: bool):
        self._conn = conn
        self._is_postgres = is_postgres

    def execute(self, sql: str, params: tuple = (), fetch: str = "none") -> Any:
        """Execute one statement inside the transaction.

        Args:
            sql: SQL statement with %s placeholders
            params: Parameters tuple
            fetch: "none", "one", "all"

        Returns:
            Affected row count for "none", dict for "one", list[dict] for "all"
        """
        adapted_sql = sql if self._is_postgres else sql.replace("%s", "?")
        cursor = self._conn.cursor()
        try:
            cursor.execute(adapted_sql, params)
            if fetch == "one":
                row = cursor.fetchone()
                if row is None:
                    return None
                columns = [desc[0] for desc in cursor.description]
                return dict(zip(columns, row))
            if fetch == "all":
                columns = [desc[0] for desc in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            return cursor.rowcount
        finally:
            cursor.close()


class Database:
    """Connection management plus schema bootstrap.

    Usage:
        db = Database(database_url=config.database_url, sqlite_path=config.sqlite_path)
        db.init_schema()
        with db.transaction() as tx:
            tx.execute("UPDATE questions SET question_text = %s WHERE id = %s", (text, qid))
    """

    def __init__(self, database_url: str = "", sqlite_path: Union[str, Path] = "course_qa.db"):
        self.database_url = database_url or ""
        self.sqlite_path = Path(sqlite_path)
        self._pg_pool = None

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgres")

    @property
    def backend_name(self) -> str:
        return "PostgreSQL" if self.is_postgres else f"SQLite ({self.sqlite_path})"

    def _get_pg_pool(self):
        """Get or create the Postgres connection pool (lazy)."""
        if self._pg_pool is None:
            import psycopg2.pool

            self._pg_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=5,
                dsn=self.database_url,
            )
            logger.info("PostgreSQL connection pool initialized (1-5 connections)")
        return self._pg_pool

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Get a raw connection (pooled for Postgres, per-call for SQLite)."""
        if self.is_postgres:
            pool = self._get_pg_pool()
            conn = pool.getconn()
            try:
                yield conn
            finally:
                pool.putconn(conn)
        else:
            conn = sqlite3.connect(str(self.sqlite_path), check_same_thread=False)
            conn.execute("PRAGMA foreign_keys=ON")
            try:
                yield conn
            finally:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run statements in one transaction; commit on success, roll back on any error."""
        with self.connection() as conn:
            tx = Transaction(conn, self.is_postgres)
            try:
                yield tx
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def execute(self, sql: str, params: tuple = (), fetch: str = "none") -> Any:
        """Execute a single statement in its own transaction."""
        with self.transaction() as tx:
            return tx.execute(sql, params, fetch=fetch)

    def close(self) -> None:
        """Release pooled connections."""
        if self._pg_pool is not None:
            self._pg_pool.closeall()
            self._pg_pool = None
            logger.info("PostgreSQL connection pool closed")

    def init_schema(self) -> None:
        """Create tables if they don't exist."""
        if self.is_postgres:
            with self.connection() as conn:
                cursor = conn.cursor()
                cursor.execute(POSTGRES_DDL)
                conn.commit()
        else:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            with self.connection() as conn:
                conn.executescript(SQLITE_DDL)
                conn.commit()
        logger.info(f"Database schema ready: {self.backend_name}")

    def fetch_reported_questions(self) -> list[dict[str, Any]]:
        """All open reports, oldest first."""
        return self.execute(
            """
            SELECT id, course_code, question_text, reason, reported_by, reported_at
            FROM reported_questions
            ORDER BY reported_at ASC
            """,
            fetch="all",
        )

    def fetch_course_structure(self, course_code: str) -> list[dict[str, Any]]:
        """Assignment/question id rows for a course (used for id hydration)."""
        return self.execute(
            """
            SELECT a.id AS assignment_id, a.assignment_title, a.week_number,
                   q.id AS question_id, q.question_number
            FROM assignments a
            INNER JOIN courses c ON a.course_id = c.id
            LEFT JOIN questions q ON q.assignment_id = a.id
            WHERE c.course_code = %s
            """,
            (course_code,),
            fetch="all",
        )


POSTGRES_DDL = """
CREATE TABLE IF NOT EXISTS courses (
    id SERIAL PRIMARY KEY,
    course_code VARCHAR(100) NOT NULL UNIQUE,
    course_name VARCHAR(500) NOT NULL
);

CREATE TABLE IF NOT EXISTS assignments (
    id SERIAL PRIMARY KEY,
    course_id INTEGER NOT NULL REFERENCES courses(id),
    week_number INTEGER,
    assignment_title VARCHAR(500) NOT NULL
);

CREATE TABLE IF NOT EXISTS questions (
    id SERIAL PRIMARY KEY,
    assignment_id INTEGER NOT NULL REFERENCES assignments(id),
    question_number INTEGER NOT NULL,
    question_text TEXT NOT NULL,
    correct_option VARCHAR(20),
    UNIQUE(assignment_id, question_number)
);

CREATE TABLE IF NOT EXISTS options (
    id SERIAL PRIMARY KEY,
    question_id INTEGER NOT NULL REFERENCES questions(id),
    option_number VARCHAR(20) NOT NULL,
    option_text TEXT NOT NULL,
    UNIQUE(question_id, option_number)
);

CREATE TABLE IF NOT EXISTS reported_questions (
    id SERIAL PRIMARY KEY,
    course_code VARCHAR(100) NOT NULL,
    question_text TEXT,
    reason TEXT,
    reported_by VARCHAR(200),
    reported_at TIMESTAMP DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_assignments_course ON assignments(course_id);
CREATE INDEX IF NOT EXISTS idx_questions_assignment ON questions(assignment_id);
"""

SQLITE_DDL = """
CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_code TEXT NOT NULL UNIQUE,
    course_name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS assignments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL REFERENCES courses(id),
    week_number INTEGER,
    assignment_title TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS questions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    assignment_id INTEGER NOT NULL REFERENCES assignments(id),
    question_number INTEGER NOT NULL,
    question_text TEXT NOT NULL,
    correct_option TEXT,
    UNIQUE(assignment_id, question_number)
);

CREATE TABLE IF NOT EXISTS options (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    question_id INTEGER NOT NULL REFERENCES questions(id),
    option_number TEXT NOT NULL,
    option_text TEXT NOT NULL,
    UNIQUE(question_id, option_number)
);

CREATE TABLE IF NOT EXISTS reported_questions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_code TEXT NOT NULL,
    question_text TEXT,
    reason TEXT,
    reported_by TEXT,
    reported_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_assignments_course ON assignments(course_id);
CREATE INDEX IF NOT EXISTS idx_questions_assignment ON questions(assignment_id);
"""
