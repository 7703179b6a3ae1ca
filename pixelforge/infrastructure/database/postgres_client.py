"""PostgreSQL client for running the resource store against a local database.

Enabled with ``USE_LOCAL_DB=1``. Connections come from a small psycopg2 pool;
every helper runs in its own transaction and commits on success.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from pixelforge.domain.errors import StorageError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS resources (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    owner_id TEXT NOT NULL,
    original_storage_key TEXT NOT NULL DEFAULT '',
    original_name TEXT NOT NULL,
    content_type TEXT NOT NULL,
    original_format TEXT NOT NULL,
    size BIGINT NOT NULL,
    width INTEGER,
    height INTEGER,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS resources_owner_idx ON resources (owner_id, created_at DESC);

CREATE TABLE IF NOT EXISTS resource_variants (
    resource_id UUID NOT NULL REFERENCES resources (id) ON DELETE CASCADE,
    hash TEXT NOT NULL,
    storage_key TEXT NOT NULL,
    content_type TEXT NOT NULL,
    format TEXT NOT NULL,
    size BIGINT NOT NULL,
    width INTEGER NOT NULL,
    height INTEGER NOT NULL,
    transformations JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (resource_id, hash)
);
"""


class PostgresClient:
    """PostgreSQL database client with connection pooling."""

    def __init__(self) -> None:
        self.enabled = os.getenv("USE_LOCAL_DB", "0") == "1"
        self._pool: Any = None

        if self.enabled:
            try:
                self._pool = pool.ThreadedConnectionPool(
                    minconn=1,
                    maxconn=int(os.getenv("POSTGRES_MAX_CONNECTIONS", "10")),
                    host=os.getenv("POSTGRES_HOST", "localhost"),
                    port=int(os.getenv("POSTGRES_PORT", "5432")),
                    database=os.getenv("POSTGRES_DB", "pixelforge"),
                    user=os.getenv("POSTGRES_USER", "pixelforge"),
                    password=os.getenv("POSTGRES_PASSWORD", "pixelforge_dev_password"),
                )
            except psycopg2.Error as exc:  # pragma: no cover
                raise StorageError(f"Failed to initialize PostgreSQL connection pool: {exc}") from exc

    @contextmanager
    def get_cursor(self) -> Generator[Any, None, None]:
        """Yield a dict cursor inside a transaction; commit on exit, roll back on error."""
        if not self.enabled or self._pool is None:
            raise StorageError("Local PostgreSQL database is not enabled")

        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                yield cursor
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            raise StorageError(f"PostgreSQL query failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def ensure_schema(self) -> None:
        with self.get_cursor() as cursor:
            cursor.execute(SCHEMA_SQL)
        logger.info("PostgreSQL schema ensured")

    def fetch_one(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row else None

    def fetch_all(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def execute(self, query: str, params: tuple = ()) -> int:
        """Run an INSERT/UPDATE/DELETE and return the affected row count."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    def close(self) -> None:
        if self._pool:
            self._pool.closeall()


_POSTGRES_CLIENT: PostgresClient | None = None


def get_postgres_client() -> PostgresClient | None:
    """Process-wide client, or None unless ``USE_LOCAL_DB=1``."""
    global _POSTGRES_CLIENT
    if os.getenv("USE_LOCAL_DB", "0") != "1":
        return None
    if _POSTGRES_CLIENT is None:
        _POSTGRES_CLIENT = PostgresClient()
        _POSTGRES_CLIENT.ensure_schema()
    return _POSTGRES_CLIENT
