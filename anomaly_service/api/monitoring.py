"""Health check and monitoring endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    """Service health; degraded while no model is loaded or the last train failed."""
    from anomaly_service.main import get_stats, get_training

    result = get_training().health()
    result["timestamp"] = datetime.now(timezone.utc).isoformat()
    result["uptime_seconds"] = get_stats().snapshot()["uptime_seconds"]
    return result


@router.get("/statistics")
async def statistics() -> dict:
    """Model state and monitoring totals, as shown on the dashboard."""
    from anomaly_service.main import get_detector

    return get_detector().get_statistics()


@router.get("/stats")
async def stats() -> dict:
    """Detailed service counters including active tourist counts.

    The ``active_tourists`` section shows:
    - ``total``: tourists with a sample in the last N seconds (configurable window)
    - ``realtime``: tourists whose last sample came through /predict
    - ``batch``: tourists whose last sample came through /batch-predict
    - ``window_seconds``: the time window used for "active" calculation
    """
    from anomaly_service.main import get_stats

    return get_stats().snapshot()
