"""Model training endpoint."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from anomaly_service.api.common import BadJSON, error_response, invalid_json_response, read_json
from anomaly_service.core.errors import InsufficientData, TrainingAborted

router = APIRouter()


@router.post("/train")
async def train(request: Request) -> JSONResponse:
    """Refit the ML model from historical records.

    Body: {"data": [{...telemetry fields...}, ...], "contamination": 0.05}
    Fitting runs in a worker thread; the previous model keeps serving until
    the new one is ready.
    """
    from anomaly_service.main import get_train_cancel, get_training

    training = get_training()
    try:
        body = await read_json(request)
    except BadJSON:
        return invalid_json_response()

    if isinstance(body, list):
        body = {"data": body}
    if not isinstance(body, dict) or not isinstance(body.get("data", []), list):
        return error_response(422, "invalid_training_request", "expected {\"data\": [...]}")

    contamination = body.get("contamination")
    if contamination is not None and (
        isinstance(contamination, bool) or not isinstance(contamination, (int, float))
    ):
        return error_response(422, "invalid_training_request", "contamination must be a number")

    try:
        model = await asyncio.to_thread(
            training.train, body.get("data", []), contamination, get_train_cancel(),
        )
    except ValueError as exc:
        return error_response(422, "invalid_training_request", str(exc))
    except InsufficientData as exc:
        return error_response(422, "insufficient_data", str(exc))
    except TrainingAborted as exc:
        return error_response(409, "training_aborted", str(exc))

    return JSONResponse(content={
        "status": "success",
        "message": f"Model trained on {model.training_records} records",
        "contamination": model.contamination,
        "version": model.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
