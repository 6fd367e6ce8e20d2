"""JSONL sink for generation lifecycle events."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso, sanitize_payload


class EventWriter:
    """Appends one JSON object per event; image payloads are redacted first."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.emitted = 0
        self._lock = threading.Lock()

    def emit(self, event_type: str, request_id: str, **payload: Any) -> dict[str, Any]:
        record = {"type": event_type, "request_id": request_id, "ts": now_utc_iso(), **sanitize_payload(payload)}
        encoded = json.dumps(record, default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as sink:
                sink.write(encoded + "\n")
            self.emitted += 1
        return record

    def read(self, event_type: str | None = None) -> list[dict[str, Any]]:
        if not self.path.is_file():
            return []
        records = [json.loads(line) for line in self.path.read_text(encoding="utf-8").splitlines() if line.strip()]
        if event_type is None:
            return records
        return [record for record in records if record.get("type") == event_type]
