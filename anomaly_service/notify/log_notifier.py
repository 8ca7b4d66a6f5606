"""Notifier that only logs the actions it is asked to carry out.

Used when no delivery channel is wired in; authority alerting lives
outside this service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from anomaly_service.core.models import VerdictRecord

log = structlog.get_logger()


class LogNotifier:
    def __init__(self) -> None:
        self.dispatched: int = 0

    async def dispatch(self, record: VerdictRecord) -> None:
        result = record.result
        for action in result.actions_taken:
            self.dispatched += 1
            log.warning("action_dispatched", action=action,
                        tourist=result.tourist_id[:8],
                        type=result.anomaly_type,
                        severity=result.severity,
                        record_id=record.record_id)
