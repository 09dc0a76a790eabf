"""
SolarCRM Engine - Database Layer

Async PostgreSQL connection pooling via psycopg3 + psycopg_pool, used by
the Postgres-backed version store. Initialization:
- Exponential backoff retry (6 attempts, max 60s total)
- SSL enforcement (sslmode=require)
- Logged DSN host/port/dbname/user, never the password
- Pool health state for readiness probes
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from loguru import logger
from psycopg_pool import AsyncConnectionPool

from . import __version__
from .config import get_settings

MAX_RETRY_ATTEMPTS = 6
MAX_TOTAL_WAIT_SECONDS = 60.0
BASE_DELAY_SECONDS = 1.0
READINESS_CHECK_TIMEOUT = 2.0


@dataclass
class PoolHealthState:
    """Tracks database pool initialization state for readiness probes."""

    initialized: bool = False
    healthy: bool = False
    last_error: str | None = None
    last_check_at: float | None = None
    init_attempts: int = 0
    init_duration_ms: float | None = None


_pool_health = PoolHealthState()
_db_pool: Optional[AsyncConnectionPool] = None


def get_pool_health() -> PoolHealthState:
    """Return the current pool health state for readiness probes."""
    return _pool_health


def _parse_dsn_for_logging(dsn: str) -> dict[str, str | None]:
    """Loggable DSN components (no password)."""
    try:
        parsed = urlparse(dsn)
        sslmode = parse_qs(parsed.query).get("sslmode", ["not_set"])[0]
        return {
            "host": parsed.hostname,
            "port": str(parsed.port) if parsed.port else "5432",
            "dbname": parsed.path.lstrip("/") if parsed.path else None,
            "user": parsed.username,
            "sslmode": sslmode,
        }
    except Exception:
        return {"host": "unparseable", "port": None, "dbname": None, "user": None, "sslmode": None}


def _ensure_sslmode(dsn: str) -> str:
    """Add sslmode=require unless the DSN already sets an sslmode."""
    parsed = urlparse(dsn)
    query = parse_qs(parsed.query)
    if "sslmode" in query:
        return dsn
    query["sslmode"] = ["require"]
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


async def init_db_pool() -> None:
    """
    Initialize the async PostgreSQL connection pool with retry.

    Never raises: on failure the pool stays None and the health state
    carries the last error so readiness probes can report it.
    """
    global _db_pool

    if _db_pool is not None:
        return

    settings = get_settings()
    if not settings.SUPABASE_DB_URL:
        logger.warning("SUPABASE_DB_URL is not set; skipping DB init")
        _pool_health.last_error = "SUPABASE_DB_URL not configured"
        return

    dsn = _ensure_sslmode(settings.SUPABASE_DB_URL)
    dsn_info = _parse_dsn_for_logging(dsn)
    logger.info(
        f"Database connection parameters: host={dsn_info.get('host')} "
        f"port={dsn_info.get('port')} dbname={dsn_info.get('dbname')} "
        f"user={dsn_info.get('user')} sslmode={dsn_info.get('sslmode')}"
    )

    app_name = "solarcrm_v" + __version__.replace(".", "_").replace("-", "_")
    start_time = time.monotonic()
    last_error: Exception | None = None

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        _pool_health.init_attempts = attempt
        elapsed = time.monotonic() - start_time
        if elapsed >= MAX_TOTAL_WAIT_SECONDS:
            logger.error(f"DB pool init: time budget exhausted ({elapsed:.1f}s)")
            break

        try:
            logger.info(f"DB pool init: attempt {attempt}/{MAX_RETRY_ATTEMPTS}")
            pool = AsyncConnectionPool(
                dsn,
                min_size=1,
                max_size=10,
                kwargs={"application_name": app_name},
                open=False,
            )
            await pool.open()

            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1;")
                    result = await cur.fetchone()
                    if result is None or result[0] != 1:
                        raise RuntimeError("SELECT 1 did not return expected result")

            _db_pool = pool
            _pool_health.initialized = True
            _pool_health.healthy = True
            _pool_health.last_error = None
            _pool_health.init_duration_ms = (time.monotonic() - start_time) * 1000
            _pool_health.last_check_at = time.monotonic()
            logger.info(
                f"Database pool initialized (attempt {attempt}, "
                f"{_pool_health.init_duration_ms:.0f}ms total)"
            )
            return

        except Exception as e:
            last_error = e
            _pool_health.last_error = f"{type(e).__name__}: {str(e)[:200]}"
            _pool_health.healthy = False
            logger.warning(f"DB pool init attempt {attempt} failed: {type(e).__name__}: {e}")

            if attempt < MAX_RETRY_ATTEMPTS:
                delay = BASE_DELAY_SECONDS * (2 ** (attempt - 1))
                jitter = random.uniform(0, delay * 0.3)
                actual_delay = min(delay + jitter, MAX_TOTAL_WAIT_SECONDS - elapsed)
                if actual_delay > 0:
                    await asyncio.sleep(actual_delay)

    _pool_health.initialized = False
    _pool_health.healthy = False
    _pool_health.init_duration_ms = (time.monotonic() - start_time) * 1000
    logger.error(
        f"Failed to initialize database pool after {_pool_health.init_attempts} attempts: {last_error}"
    )


async def check_db_ready(timeout: float = READINESS_CHECK_TIMEOUT) -> tuple[bool, str]:
    """
    Readiness check: SELECT 1 with a timeout.

    Returns:
        Tuple of (is_ready, status_message)
    """
    pool = _db_pool
    if pool is None:
        return False, _pool_health.last_error or "Pool not initialized"

    async def _ping() -> int:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1;")
                row = await cur.fetchone()
                return row[0] if row else 0

    try:
        start = time.monotonic()
        result = await asyncio.wait_for(_ping(), timeout=timeout)
        latency_ms = (time.monotonic() - start) * 1000
    except asyncio.TimeoutError:
        _pool_health.healthy = False
        _pool_health.last_error = f"Query timeout ({timeout}s)"
        return False, f"timeout ({timeout}s)"
    except Exception as e:
        _pool_health.healthy = False
        _pool_health.last_error = f"{type(e).__name__}: {str(e)[:100]}"
        return False, f"error: {type(e).__name__}"

    if result != 1:
        _pool_health.healthy = False
        _pool_health.last_error = f"SELECT 1 returned {result}"
        return False, f"unexpected_result: {result}"

    _pool_health.healthy = True
    _pool_health.last_error = None
    _pool_health.last_check_at = time.monotonic()
    return True, f"ok ({latency_ms:.0f}ms)"


async def close_db_pool() -> None:
    """Close the connection pool and reset health state (FastAPI shutdown)."""
    global _db_pool
    if _db_pool is not None:
        logger.info("Closing PostgreSQL connection pool")
        await _db_pool.close()
        _db_pool = None
        _pool_health.initialized = False
        _pool_health.healthy = False


async def get_pool() -> Optional[AsyncConnectionPool]:
    """
    Returns the async connection pool, initializing it on first use.

    Callers can use:
        pool = await get_pool()
        async with pool.connection() as conn:
            ...
    """
    if _db_pool is None:
        await init_db_pool()
    return _db_pool
