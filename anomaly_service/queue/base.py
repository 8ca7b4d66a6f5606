"""Queue interface (port) for verdicts awaiting archive and dispatch."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from anomaly_service.core.models import VerdictRecord


class VerdictQueue(Protocol):
    """Port: accepts verdict records and delivers them to the consumer."""

    async def put(self, record: VerdictRecord) -> None: ...

    async def get(self) -> VerdictRecord: ...

    def qsize(self) -> int: ...
