"""Prediction and history API endpoints.

This is the thin FastAPI adapter. It parses HTTP requests and calls the
detector; all scoring lives in the core.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from anomaly_service.api.common import BadJSON, error_response, invalid_json_response, read_json
from anomaly_service.core.errors import InvalidSample, OutOfOrderSample

router = APIRouter()


@router.post("/predict")
async def predict(request: Request) -> JSONResponse:
    """Score a single telemetry sample.

    422 for a malformed sample, 409 when the sample is older than the last
    one accepted for the same tourist.
    """
    from anomaly_service.main import get_detector

    detector = get_detector()
    try:
        body = await read_json(request)
    except BadJSON:
        return invalid_json_response()

    try:
        result = detector.predict(body)
    except InvalidSample as exc:
        return error_response(422, "invalid_sample", str(exc))
    except OutOfOrderSample as exc:
        return error_response(409, "out_of_order", str(exc))

    await detector.publish(result)
    return JSONResponse(content=result.to_dict())


@router.post("/batch-predict")
async def batch_predict(request: Request) -> JSONResponse:
    """Score a batch of samples.

    Accepts a JSON array of samples, or ``{"samples": [...]}``. Rejected
    items are reported under ``errors`` by index and do not fail the batch.
    """
    from anomaly_service.main import get_config, get_detector

    detector = get_detector()
    try:
        body = await read_json(request)
    except BadJSON:
        return invalid_json_response()

    items = body.get("samples") if isinstance(body, dict) else body
    if not isinstance(items, list):
        return error_response(422, "invalid_batch", "expected a JSON array of samples")

    max_batch = get_config().limits.max_batch_size
    if len(items) > max_batch:
        return error_response(413, "batch_too_large",
                              f"batch of {len(items)} exceeds limit of {max_batch}")

    # Scoring a large batch takes a while; keep the event loop free.
    outcome = await asyncio.to_thread(detector.batch_predict, items)
    for result in outcome["results"]:
        await detector.publish(result)

    return JSONResponse(content={
        "results": [r.to_dict() for r in outcome["results"]],
        "errors": outcome["errors"],
        "processed": outcome["processed"],
    })


@router.get("/tourist/{tourist_id}/history")
async def tourist_history(
    tourist_id: str,
    limit: int | None = Query(default=None, ge=1),
) -> JSONResponse:
    """Return a tourist's retained verdicts, most recent first."""
    from anomaly_service.main import get_detector

    history = get_detector().get_history(tourist_id, limit)
    return JSONResponse(content={
        "touristId": tourist_id,
        "history": [r.to_dict() for r in history],
        "count": len(history),
    })
