# groupkeeper/db/helpers.py
"""
Query helpers used by the repository layer.

Each helper borrows a pooled connection for a single statement and turns
driver errors into DatabaseError.
"""

from collections.abc import Sequence
from typing import Any

import psycopg

from groupkeeper.db.pool import get_db_connection
from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A statement failed at the driver level."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation


def _wrap(operation: str, query: str, e: psycopg.Error) -> DatabaseError:
    logger.error("Database error", operation=operation, query=query[:100], error=str(e))
    return DatabaseError(f"Query failed: {e}", operation=operation)


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    try:
        async with get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()
    except psycopg.Error as e:
        raise _wrap("fetch_one", query, e) from e


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    try:
        async with get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
    except psycopg.Error as e:
        raise _wrap("fetch_all", query, e) from e


async def execute_query(query: str, params: tuple = ()) -> int:
    """
    Run a write statement.

    Returns:
        Number of affected rows
    """
    try:
        async with get_db_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount
    except psycopg.Error as e:
        raise _wrap("execute", query, e) from e


async def execute_many(query: str, params_seq: Sequence[tuple]) -> None:
    """Run the same statement once per parameter tuple."""
    if not params_seq:
        return
    try:
        async with get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.executemany(query, params_seq)
    except psycopg.Error as e:
        raise _wrap("execute_many", query, e) from e
