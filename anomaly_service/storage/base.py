"""Storage interface (port) for archiving verdicts."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from anomaly_service.core.models import VerdictRecord


class VerdictStorage(Protocol):
    """Port: persists verdict records outside the process."""

    async def store(self, record: VerdictRecord) -> None: ...
