"""File-based verdict archive.

Stores verdict records as JSON Lines, one file per hour:
base_dir/YYYY/MM/DD/HH/verdicts.jsonl

Partitioned by server receive time, so late batches land in the hour they
were scored.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from anomaly_service.core.models import VerdictRecord

log = structlog.get_logger()


class FileVerdictStorage:
    """VerdictStorage backed by date/hour partitioned files on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def _hour_dir(self, timestamp_ms: int) -> Path:
        """Return the directory for a given timestamp."""
        dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        path = self._base_dir / f"{dt.year:04d}" / f"{dt.month:02d}" / f"{dt.day:02d}" / f"{dt.hour:02d}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _to_jsonl_entry(self, record: VerdictRecord) -> str:
        entry = {
            "id": record.record_id,
            "server_timestamp_ms": record.server_timestamp_ms,
            "verdict": record.result.to_dict(),
        }
        return json.dumps(entry, separators=(",", ":"), default=str)

    async def store(self, record: VerdictRecord) -> None:
        """Append a single verdict record to its hour file."""
        hour_dir = self._hour_dir(record.server_timestamp_ms)
        jsonl_path = hour_dir / "verdicts.jsonl"
        with open(jsonl_path, "a") as f:
            f.write(self._to_jsonl_entry(record) + "\n")

        log.debug("verdict_written", record_id=record.record_id,
                  path=str(hour_dir))

    def read_all(self) -> list[dict]:
        """Read back every archived entry, oldest partition first."""
        entries = []
        for path in sorted(self._base_dir.glob("*/*/*/*/verdicts.jsonl")):
            with open(path) as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(json.loads(line))
                    except json.JSONDecodeError:
                        log.warning("corrupt_verdict_line", path=str(path))
        return entries
