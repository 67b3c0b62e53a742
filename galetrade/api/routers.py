"""Internal API routers — /status, /stats, /config, /control, /activity.

No business logic, no DB access.  Delegates to the engine and repos.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from galetrade.errors import ValidationError

logger = logging.getLogger("galetrade.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_engine = None  # Set via configure_routers()
_activity_repo = None  # Set via configure_routers()


def configure_routers(engine=None, activity_repo=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        engine: A ``MartingaleEngine`` (or duck-type for tests).
        activity_repo: An ``ActivityRepo`` for the /activity endpoint.
    """
    global _engine, _activity_repo  # noqa: PLW0603
    _engine = engine
    _activity_repo = activity_repo


def _require_engine():
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not configured")
    return _engine


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the full engine snapshot."""
    return _require_engine().get_state()


@router.get("/stats")
async def get_stats():
    return _require_engine().get_stats().to_dict()


@router.get("/config")
async def get_config():
    return _require_engine().get_config().to_dict()


@router.post("/config")
async def post_config(body: dict):
    """Merge fields into the trading config (applies from the next start)."""
    engine = _require_engine()
    try:
        config = engine.update_config(**body)
    except TypeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info("Config updated: %s", body)
    return {"status": "ok", "config": config.to_dict()}


# ── Control actions ──────────────────────────────────────────────────────


@router.post("/control/start")
async def start_engine():
    engine = _require_engine()
    try:
        await engine.start()
    except ValidationError as exc:
        return {"status": "error", "kind": exc.kind.value, "errors": exc.errors}
    logger.info("Engine started via API.")
    return {"status": "started"}


@router.post("/control/stop")
async def stop_engine():
    await _require_engine().stop()
    logger.info("Engine stopped via API.")
    return {"status": "stopped"}


@router.get("/activity")
async def get_activity(
    limit: int = Query(default=50, ge=1, le=500),
    event_type: Optional[str] = Query(default=None),
    level: Optional[str] = Query(default=None),
):
    """Return recent activity events, newest first."""
    if _activity_repo is None:
        return {"events": [], "total": 0}
    return _activity_repo.get_events(limit=limit, event_type=event_type, level=level)
