"""Demo endpoint used by the dashboard's "simulate anomaly" buttons."""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from anomaly_service.api.common import error_response
from anomaly_service.core.scenarios import SCENARIOS, build_scenario

router = APIRouter(prefix="/demo")


@router.post("/simulate-anomaly")
async def simulate_anomaly(scenario: str = Query(default="route_deviation")) -> JSONResponse:
    """Run a synthetic trail for a fresh demo tourist and return the last verdict."""
    from anomaly_service.main import get_detector

    if scenario not in SCENARIOS:
        return error_response(422, "unknown_scenario",
                              f"scenario must be one of {sorted(SCENARIOS)}")

    detector = get_detector()
    result = None
    for raw in build_scenario(scenario):
        result = detector.predict(raw)
        await detector.publish(result)
    return JSONResponse(content=result.to_dict())
