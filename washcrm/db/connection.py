"""
PostgreSQL access for the engine.

One connection per unit of work: get_db_cursor() opens a connection, yields a
RealDictCursor, commits when the block exits cleanly and rolls back otherwise.
Every session runs with the configured TimeZone (so NOW() and date casts match
the shop's calendar) and a statement_timeout, so a stuck query surfaces as an
error instead of hanging the caller.
"""

import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor

from washcrm.config import config

logger = logging.getLogger(__name__)


def _session_options() -> str:
    return (
        f"-c statement_timeout={config.DB_STATEMENT_TIMEOUT_MS} "
        f"-c TimeZone={config.TIMEZONE}"
    )


@contextmanager
def get_db_connection():
    """
    Transactional connection: commit on success, rollback on any exception.

    Usage:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("UPDATE offers SET status = 'completed' WHERE id = %s", (offer_id,))
    """
    conn = psycopg2.connect(
        config.DATABASE_URL,
        connect_timeout=config.DB_CONNECT_TIMEOUT_SECONDS,
        options=_session_options(),
    )
    try:
        yield conn
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error(f"Rolled back transaction: {type(e).__name__}: {e}")
        raise
    finally:
        conn.close()


@contextmanager
def get_db_cursor(dict_cursor=True):
    """
    Cursor inside its own transaction. Rows are dicts unless dict_cursor=False.

    Usage:
        with get_db_cursor() as cur:
            cur.execute("SELECT * FROM offer_reminders WHERE offer_id = %s", (offer_id,))
            rows = cur.fetchall()
    """
    with get_db_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor if dict_cursor else None)
        try:
            yield cur
        finally:
            cur.close()
