"""Notifier interface (port) for executing decided actions."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from anomaly_service.core.models import VerdictRecord


class Notifier(Protocol):
    """Port: carries out a verdict's ``actions_taken`` (escalation, alerts)."""

    async def dispatch(self, record: VerdictRecord) -> None: ...
