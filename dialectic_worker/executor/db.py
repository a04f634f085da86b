"""Database layer for the job pipeline.

Supports two backends:
- PostgreSQL (production, set DIALECTIC_DATABASE_URL)
- SQLite (local development and tests, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite). No ORM.

Thread-safety: Postgres uses a ThreadedConnectionPool. SQLite uses
per-call connections with check_same_thread=False and WAL journaling.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Database URL: postgres://... for Postgres, or empty for SQLite
DATABASE_URL = os.environ.get("DIALECTIC_DATABASE_URL", "")

SQLITE_PATH = Path(os.environ.get("DIALECTIC_SQLITE_PATH", str(Path.cwd() / "dialectic_worker.db")))

_initialized = False
_pg_pool = None


def configure(database_url: Optional[str] = None, sqlite_path: Optional[Path] = None) -> None:
    """Point the layer at a different database and force re-initialization."""
    global DATABASE_URL, SQLITE_PATH, _initialized, _pg_pool
    if database_url is not None:
        DATABASE_URL = database_url
    if sqlite_path is not None:
        SQLITE_PATH = Path(sqlite_path)
    if _pg_pool is not None:
        _pg_pool.closeall()
        _pg_pool = None
    _initialized = False


def _is_postgres() -> bool:
    return DATABASE_URL.startswith("postgres")


def _get_pg_pool():
    """Get or create the Postgres connection pool (lazy singleton)."""
    global _pg_pool
    if _pg_pool is None:
        import psycopg2.pool
        _pg_pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=10,
            dsn=DATABASE_URL,
        )
        logger.info("PostgreSQL connection pool initialized (1-10 connections)")
    return _pg_pool


@contextmanager
def get_connection():
    """Get a database connection (Postgres or SQLite).

    Usage:
        with get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(...)
            conn.commit()
    """
    if _is_postgres():
        pool = _get_pg_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)
    else:
        conn = sqlite3.connect(str(SQLITE_PATH), check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()


def _json_dumps(data: Any) -> Optional[str]:
    """Serialize data to a JSON string for storage. None stays NULL."""
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, default=str)


def _json_loads(text: Any) -> Any:
    """Deserialize a JSON column value."""
    if text is None or text == "":
        return None
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


def execute(sql: str, params: tuple = (), fetch: str = "none") -> Any:
    """Execute a SQL statement.

    Args:
        sql: SQL statement (use %s placeholders; adapted for SQLite)
        params: Parameters tuple
        fetch: "none", "one", "all" or "rowcount"

    Returns:
        None for "none", dict for "one", list[dict] for "all",
        number of affected rows for "rowcount"
    """
    init_db()
    adapted_sql = sql if _is_postgres() else sql.replace("%s", "?")

    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(adapted_sql, params)

        if fetch == "one":
            row = cursor.fetchone()
            if row is None:
                return None
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return dict(zip(columns, row))
            return dict(row)
        if fetch == "all":
            rows = cursor.fetchall()
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return [dict(zip(columns, row)) for row in rows]
            return [dict(row) for row in rows]

        conn.commit()
        if fetch == "rowcount":
            return cursor.rowcount
        return None


def init_db() -> None:
    """Create tables if they don't exist."""
    global _initialized
    if _initialized:
        return

    ddl = _POSTGRES_DDL if _is_postgres() else _SQLITE_DDL
    with get_connection() as conn:
        cursor = conn.cursor()
        if _is_postgres():
            cursor.execute(ddl)
        else:
            cursor.executescript(ddl)
        conn.commit()

    _initialized = True
    backend = "PostgreSQL" if _is_postgres() else f"SQLite ({SQLITE_PATH})"
    logger.info(f"Dialectic database initialized: {backend}")


_POSTGRES_DDL = """
CREATE TABLE IF NOT EXISTS dialectic_jobs (
    id VARCHAR(100) PRIMARY KEY,
    job_type VARCHAR(20) NOT NULL,
    status VARCHAR(30) NOT NULL DEFAULT 'pending',
    parent_job_id VARCHAR(100),
    session_id VARCHAR(100) NOT NULL,
    stage_slug VARCHAR(50) NOT NULL,
    iteration_number INTEGER NOT NULL DEFAULT 1,
    payload JSONB NOT NULL,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    results JSONB,
    error_details JSONB,
    created_at TIMESTAMP DEFAULT NOW(),
    started_at TIMESTAMP,
    completed_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_dialectic_jobs_status
    ON dialectic_jobs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_dialectic_jobs_parent
    ON dialectic_jobs(parent_job_id);

CREATE TABLE IF NOT EXISTS dialectic_contributions (
    id VARCHAR(100) PRIMARY KEY,
    session_id VARCHAR(100) NOT NULL,
    stage_slug VARCHAR(50) NOT NULL,
    iteration_number INTEGER NOT NULL DEFAULT 1,
    contribution_type VARCHAR(50) NOT NULL,
    model_id VARCHAR(200),
    model_name VARCHAR(200),
    model_slug VARCHAR(200),
    content TEXT NOT NULL DEFAULT '',
    storage_path TEXT,
    document_relationships JSONB DEFAULT '{}',
    canonical_path_params JSONB DEFAULT '{}',
    prompt_tokens INTEGER DEFAULT 0,
    completion_tokens INTEGER DEFAULT 0,
    total_tokens INTEGER DEFAULT 0,
    edit_version INTEGER NOT NULL DEFAULT 1,
    is_latest_edit INTEGER NOT NULL DEFAULT 1,
    original_model_contribution_id VARCHAR(100),
    status VARCHAR(20) NOT NULL DEFAULT 'completed',
    continuation_count INTEGER NOT NULL DEFAULT 0,
    hit_continuation_cap INTEGER NOT NULL DEFAULT 0,
    job_id VARCHAR(100),
    created_at TIMESTAMP DEFAULT NOW(),
    updated_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_dialectic_contributions_stage
    ON dialectic_contributions(session_id, iteration_number, stage_slug);
"""

_SQLITE_DDL = """
CREATE TABLE IF NOT EXISTS dialectic_jobs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    parent_job_id TEXT,
    session_id TEXT NOT NULL,
    stage_slug TEXT NOT NULL,
    iteration_number INTEGER NOT NULL DEFAULT 1,
    payload TEXT NOT NULL,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    results TEXT,
    error_details TEXT,
    created_at TEXT,
    started_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_dialectic_jobs_status
    ON dialectic_jobs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_dialectic_jobs_parent
    ON dialectic_jobs(parent_job_id);

CREATE TABLE IF NOT EXISTS dialectic_contributions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    stage_slug TEXT NOT NULL,
    iteration_number INTEGER NOT NULL DEFAULT 1,
    contribution_type TEXT NOT NULL,
    model_id TEXT,
    model_name TEXT,
    model_slug TEXT,
    content TEXT NOT NULL DEFAULT '',
    storage_path TEXT,
    document_relationships TEXT DEFAULT '{}',
    canonical_path_params TEXT DEFAULT '{}',
    prompt_tokens INTEGER DEFAULT 0,
    completion_tokens INTEGER DEFAULT 0,
    total_tokens INTEGER DEFAULT 0,
    edit_version INTEGER NOT NULL DEFAULT 1,
    is_latest_edit INTEGER NOT NULL DEFAULT 1,
    original_model_contribution_id TEXT,
    status TEXT NOT NULL DEFAULT 'completed',
    continuation_count INTEGER NOT NULL DEFAULT 0,
    hit_continuation_cap INTEGER NOT NULL DEFAULT 0,
    job_id TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_dialectic_contributions_stage
    ON dialectic_contributions(session_id, iteration_number, stage_slug);
"""
