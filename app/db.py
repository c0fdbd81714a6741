"""Postgres connection pool and query helpers (Supabase Postgres)."""

from __future__ import annotations

import contextvars
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool


def get_db_url() -> str:
    url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_DB_URL or DATABASE_URL is required when USE_DB=1")
    return url


_POOL: SimpleConnectionPool | None = None
_POOL_LOCK = threading.Lock()
_logger = logging.getLogger("routeshape.db")
_query_logger = logging.getLogger("routeshape.db.query")
_DB_STATS: contextvars.ContextVar[dict | None] = contextvars.ContextVar("routeshape_db_stats", default=None)
_SLOW_MS = float(os.getenv("ROUTESHAPE_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("ROUTESHAPE_QUERY_LOG", "").strip() == "1"


def _empty_stats() -> dict:
    return {"queries": 0, "acquire_ms": 0.0, "total_ms": 0.0}


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and val.startswith("ak_"):
            redacted.append("<api_key>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    with _POOL_LOCK:
        if _POOL is not None:
            return
        if minconn is None:
            minconn = int(os.getenv("ROUTESHAPE_DB_POOL_MIN", "1"))
        if maxconn is None:
            maxconn = int(os.getenv("ROUTESHAPE_DB_POOL_MAX", "10"))
        _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())
        _logger.info("db_pool_ready min=%s max=%s", minconn, maxconn)


def _get_pool() -> SimpleConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


def reset_db_stats() -> None:
    _DB_STATS.set(_empty_stats())


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        return _empty_stats()
    return stats


def _add_stat(key: str, delta: float) -> None:
    stats = dict(get_db_stats())
    stats[key] = stats.get(key, 0.0) + delta
    if key == "total_ms":
        stats["queries"] = stats.get("queries", 0) + 1
    _DB_STATS.set(stats)


@contextmanager
def get_conn():
    pool = _get_pool()
    acquire_start = time.perf_counter()
    conn = pool.getconn()
    _add_stat("acquire_ms", (time.perf_counter() - acquire_start) * 1000)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def _log_query(query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    _add_stat("total_ms", elapsed_ms)
    if not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        row = cur.fetchone()
        rowcount = cur.rowcount
    _log_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return dict(row) if row else None


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        rows = [dict(r) for r in cur.fetchall()]
        rowcount = cur.rowcount
    _log_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return rows


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql, params or [])
        rowcount = cur.rowcount
    _log_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return rowcount
