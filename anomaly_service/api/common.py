"""Shared helpers for the JSON endpoints."""

from __future__ import annotations

import json

from fastapi import Request
from fastapi.responses import JSONResponse


class BadJSON(Exception):
    pass


async def read_json(request: Request):
    """Parse the request body as JSON, raising BadJSON on failure."""
    body_bytes = await request.body()
    try:
        return json.loads(body_bytes)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BadJSON() from None


def error_response(status_code: int, error: str, detail: str = "") -> JSONResponse:
    return JSONResponse(
        content={"error": error, "detail": detail},
        status_code=status_code,
    )


def invalid_json_response() -> JSONResponse:
    return error_response(400, "invalid_json", "request body is not valid JSON")
