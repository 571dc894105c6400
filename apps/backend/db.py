"""
db.py

PostgreSQL (psycopg2) helpers with a process-global connection pool.

The job store and audit sink reuse one pooled connection per operation through
the *_conn helpers. Connection settings come from ``infra.config`` (``DB_URL``,
``DB_POOL_MAXCONN``, ``DB_CONNECT_TIMEOUT``).
"""

from __future__ import annotations

import atexit
import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from infra.config import get_settings

logger = logging.getLogger(__name__)


def _db_url() -> str:
    url = get_settings().db.url
    if not url:
        raise RuntimeError("DB_URL is not set")
    return url


_POOL = None
_POOL_DSN: Optional[str] = None


def _get_pool():
    """Return a process-global psycopg2 pool, creating it on first use."""
    global _POOL, _POOL_DSN

    dsn = _db_url()
    if _POOL is not None and _POOL_DSN == dsn:
        return _POOL

    from psycopg2.pool import SimpleConnectionPool  # type: ignore

    db_cfg = get_settings().db
    _POOL = SimpleConnectionPool(
        minconn=1,
        maxconn=int(db_cfg.pool_maxconn),
        dsn=dsn,
        connect_timeout=int(db_cfg.connect_timeout),
    )
    _POOL_DSN = dsn
    return _POOL


def _close_pool() -> None:
    """Close the pool on process exit."""
    global _POOL
    try:
        if _POOL is not None:
            _POOL.closeall()
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("closing connection pool failed: %s", exc)
    finally:
        _POOL = None


atexit.register(_close_pool)


@contextmanager
def db_conn() -> Iterator[Any]:
    """Yield a pooled psycopg2 connection.

    Callers commit explicitly. Any open transaction is rolled back before the
    connection goes back to the pool; a connection the pool refuses is closed.
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        try:
            conn.rollback()
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("rollback before putconn failed: %s", exc)
        try:
            pool.putconn(conn)
        except Exception:  # pylint: disable=broad-except
            try:
                conn.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.debug("closing rejected connection failed: %s", exc)


def execute_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> int:
    """Execute a statement on an existing connection and return the affected row count."""
    with conn.cursor() as cur:
        cur.execute(sql, params or ())
        return int(cur.rowcount or 0)


def to_jsonb(value: Any) -> str:
    """Serialize a Python object to a JSON string suitable for ::jsonb."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def _cols_from_description(desc: Any) -> list[str]:
    """Extract column names from cursor.description."""
    if not desc:
        return []
    cols: list[str] = []
    for i, d in enumerate(desc):
        try:
            name = d[0]
        except (IndexError, KeyError, TypeError):
            name = None
        cols.append(str(name) if name else f"col_{i}")
    return cols


def fetch_one_dict_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
    """Execute a query and return one row as a dict (or None)."""
    with conn.cursor() as cur:
        cur.execute(sql, params or ())
        row = cur.fetchone()
        if row is None:
            return None
        cols = _cols_from_description(getattr(cur, "description", None))
        if not cols:
            return None
        return dict(zip(cols, row, strict=False))


def fetch_all_dict_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> list[dict[str, Any]]:
    """Execute a query and return all rows as dicts."""
    with conn.cursor() as cur:
        cur.execute(sql, params or ())
        rows = cur.fetchall()
        cols = _cols_from_description(getattr(cur, "description", None))
        if not cols:
            return []
        return [dict(zip(cols, r, strict=False)) for r in rows]
