import asyncio
import logging
import time
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter()
logger = logging.getLogger(__name__)

_HEAD_CACHE: dict[str, Any] = {"timestamp": 0.0, "heads": None, "skip_reason": None}
_HEAD_CACHE_TTL_SECONDS = 60
_DB_CHECK_TIMEOUT_SECONDS = 2.0


def _load_expected_heads() -> tuple[list[str] | None, str | None]:
    """Load expected Alembic heads, cached for a minute.

    Packaged deployments may ship without migration files; heads is then None and
    the skip reason is reported instead of failing readiness.
    """
    now = time.monotonic()
    if now - _HEAD_CACHE["timestamp"] < _HEAD_CACHE_TTL_SECONDS:
        return _HEAD_CACHE["heads"], _HEAD_CACHE["skip_reason"]

    try:
        cfg = Config("alembic.ini")
        cfg.set_main_option("script_location", "alembic")
        heads = list(ScriptDirectory.from_config(cfg).get_heads())
        skip_reason = None
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "migrations_check_skipped_no_alembic_files",
            extra={"extra": {"error": str(exc), "error_type": type(exc).__name__}},
        )
        heads = None
        skip_reason = "skipped_no_alembic_files"
    _HEAD_CACHE.update({"timestamp": now, "heads": heads, "skip_reason": skip_reason})
    return heads, skip_reason


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _db_check(request: Request) -> tuple[bool, dict[str, Any]]:
    session_factory = getattr(request.app.state, "db_session_factory", None)
    if session_factory is None:
        return False, {"message": "database session factory unavailable"}

    async def _ping_db():
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(_ping_db(), timeout=_DB_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return False, {"message": "database check timed out", "timeout_seconds": _DB_CHECK_TIMEOUT_SECONDS}
    except SQLAlchemyError as exc:
        logger.debug("database_check_failed", exc_info=exc)
        return False, {"message": "database check failed", "error": exc.__class__.__name__}

    return True, {"message": "database reachable"}


async def _migrations_check(request: Request) -> tuple[bool, dict[str, Any]]:
    expected_heads, skip_reason = _load_expected_heads()
    if skip_reason:
        return True, {"migrations_check": skip_reason}

    session_factory = getattr(request.app.state, "db_session_factory", None)
    if session_factory is None:
        return False, {"message": "database session factory unavailable", "migrations_check": "not_run"}

    async def _fetch_version() -> str | None:
        async with session_factory() as session:
            try:
                result = await session.execute(text("SELECT version_num FROM alembic_version"))
            except SQLAlchemyError:
                return None
            row = result.first()
            return row[0] if row else None

    try:
        current_version = await asyncio.wait_for(_fetch_version(), timeout=_DB_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return False, {"message": "migration check timed out", "migrations_check": "timeout"}

    migrations_current = bool(expected_heads) and current_version in expected_heads
    return migrations_current, {
        "message": "migrations in sync" if migrations_current else "migrations pending",
        "current_version": current_version,
        "expected_heads": expected_heads,
        "migrations_check": "ok",
    }


async def _run_check(name: str, check_fn) -> dict[str, Any]:  # noqa: ANN001
    start = time.perf_counter()
    try:
        ok, detail = await check_fn()
    except Exception as exc:  # noqa: BLE001
        logger.exception("readiness_check_failed", extra={"extra": {"check": name}})
        ok = False
        detail = {"message": "unexpected error", "error": type(exc).__name__}
    elapsed_ms = (time.perf_counter() - start) * 1000
    return {"name": name, "ok": bool(ok), "ms": round(elapsed_ms, 2), "detail": detail}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks = [
        await _run_check("db", lambda: _db_check(request)),
        await _run_check("migrations", lambda: _migrations_check(request)),
    ]
    overall_ok = all(check["ok"] for check in checks)
    return JSONResponse(
        status_code=200 if overall_ok else 503,
        content={"ok": overall_ok, "checks": checks},
    )
