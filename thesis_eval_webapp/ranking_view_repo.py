from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from typing import Any

from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

try:
    from .config import GROUP_RANKING_VIEW, MAX_SCAN_LIMIT
    from .score_store import RankingView
except ImportError:
    from config import GROUP_RANKING_VIEW, MAX_SCAN_LIMIT
    from score_store import RankingView


def _get_pg_config() -> dict[str, Any]:
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = int(os.getenv("POSTGRES_PORT", "5432"))
    dbname = os.getenv("POSTGRES_DB")
    user = os.getenv("POSTGRES_USER")
    password = os.getenv("POSTGRES_PASSWORD")
    missing = [k for k, v in [("POSTGRES_DB", dbname), ("POSTGRES_USER", user), ("POSTGRES_PASSWORD", password)] if not v]
    if missing:
        raise ValueError(f"PostgreSQL connection settings are missing: {', '.join(missing)}")
    return {
        "host": host,
        "port": port,
        "dbname": dbname,
        "user": user,
        "password": password,
    }


_PG_POOL: ThreadedConnectionPool | None = None
_PG_POOL_LOCK = threading.Lock()


def _get_pool_bounds() -> tuple[int, int]:
    raw_min = os.getenv("PG_POOL_MIN_SIZE", "1")
    raw_max = os.getenv("PG_POOL_MAX_SIZE", "10")
    try:
        min_size = int(raw_min)
    except ValueError:
        min_size = 1
    try:
        max_size = int(raw_max)
    except ValueError:
        max_size = 10
    min_size = max(1, min(min_size, 32))
    max_size = max(min_size, min(max_size, 64))
    return min_size, max_size


def _get_pg_pool() -> ThreadedConnectionPool:
    global _PG_POOL
    pool = _PG_POOL
    if pool is not None:
        return pool

    with _PG_POOL_LOCK:
        pool = _PG_POOL
        if pool is None:
            min_size, max_size = _get_pool_bounds()
            pool = ThreadedConnectionPool(minconn=min_size, maxconn=max_size, **_get_pg_config())
            _PG_POOL = pool
    return pool


@contextmanager
def get_pg_connection():
    pool = _get_pg_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        # Reads only; always end the transaction before handing the connection back.
        try:
            conn.rollback()
        finally:
            pool.putconn(conn)


def close_pg_pool() -> None:
    global _PG_POOL
    with _PG_POOL_LOCK:
        pool = _PG_POOL
        _PG_POOL = None
    if pool is not None:
        pool.closeall()


class PgGroupRankingView(RankingView):
    """Reads the precomputed group leaderboard from PostgreSQL."""

    def __init__(self, view_name: str = GROUP_RANKING_VIEW, connection_factory=get_pg_connection) -> None:
        self.view_name = view_name
        self._connect = connection_factory

    def leaderboard(self, limit: int | None = None) -> list[dict[str, Any]]:
        safe_limit = limit if limit is not None and limit > 0 else MAX_SCAN_LIMIT
        with self._connect() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT group_id, group_title, group_percentage,
                           submitted_evaluations, latest_defense_at, rank
                    FROM {self.view_name}
                    ORDER BY rank ASC
                    LIMIT %s
                    """,
                    (safe_limit,),
                )
                return [dict(r) for r in cur.fetchall()]

    def by_id(self, target_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT group_id, group_title, group_percentage,
                           submitted_evaluations, latest_defense_at, rank
                    FROM {self.view_name}
                    WHERE lower(group_id::text) = lower(%s)
                    LIMIT 1
                    """,
                    (str(target_id).strip(),),
                )
                row = cur.fetchone()
        return dict(row) if row is not None else None
