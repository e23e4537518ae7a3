#!/usr/bin/env python3
"""
Sprint Bot Maintenance

Operator-only store maintenance. reset_database() wipes every table; it is
idempotent, so a locked or busy store is retried with linear backoff
(RESET_RETRY_DELAY x attempt) before giving up with StoreUnavailableError.
"""

import logging
import sqlite3
import time

from .schema import TABLES_DELETE_ORDER, write_transaction

logger = logging.getLogger(__name__)

RESET_MAX_ATTEMPTS = 10
RESET_RETRY_DELAY = 0.3  # seconds, multiplied by the attempt number


class StoreUnavailableError(RuntimeError):
    """The store stayed locked/busy through every retry."""

    def __init__(self, operation: str, attempts: int, cause: Exception):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempt(s): {cause}")


def is_transient(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _clear_tables(conn: sqlite3.Connection) -> dict[str, int]:
    deleted: dict[str, int] = {}
    with write_transaction(conn):
        for table in TABLES_DELETE_ORDER:
            deleted[table] = conn.execute(f"DELETE FROM {table}").rowcount
        has_sequence = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
        ).fetchone()
        if has_sequence:
            conn.execute("DELETE FROM sqlite_sequence")
    return deleted


def reset_database(
    conn: sqlite3.Connection,
    max_attempts: int = RESET_MAX_ATTEMPTS,
    retry_delay: float = RESET_RETRY_DELAY,
    sleep=time.sleep,
) -> dict[str, int]:
    """
    Delete all rows from every table and reset AUTOINCREMENT counters.

    Returns per-table deleted row counts. Non-transient errors propagate
    immediately.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            deleted = _clear_tables(conn)
        except sqlite3.OperationalError as e:
            if not is_transient(e):
                raise
            if attempt == max_attempts:
                logger.error("Reset gave up after %d attempts: %s", attempt, e)
                raise StoreUnavailableError("reset_database", attempt, e) from e
            delay = retry_delay * attempt
            logger.warning("Store busy during reset (attempt %d/%d), retrying in %.1fs", attempt, max_attempts, delay)
            sleep(delay)
            continue
        logger.info("Database reset: %s", deleted)
        return deleted
    raise StoreUnavailableError("reset_database", max_attempts, RuntimeError("no attempts made"))
