"""In-process asyncio queue implementation of VerdictQueue."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from anomaly_service.core.models import VerdictRecord


class AsyncioVerdictQueue:
    """VerdictQueue backed by asyncio.Queue. Zero dependencies."""

    def __init__(self, max_size: int = 10_000) -> None:
        self._queue: asyncio.Queue[VerdictRecord] = asyncio.Queue(maxsize=max_size)

    async def put(self, record: VerdictRecord) -> None:
        await self._queue.put(record)

    async def get(self) -> VerdictRecord:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()
