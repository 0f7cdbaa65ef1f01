from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

EventSink = Callable[[str, Dict[str, Any]], None]

# Uploaded payloads (stdout, code) can be huge; audit lines stay readable.
_MAX_STR = 2000


def _shrink(value: Any) -> Any:
    if isinstance(value, str) and len(value) > _MAX_STR:
        return value[:_MAX_STR] + "…"
    if isinstance(value, dict):
        return {k: _shrink(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_shrink(v) for v in value[:50]]
    return value


class AuditLogger:
    """
    Append-only JSONL event log. One line per pipeline event, grouped by correlation id
    (one id per analysis request or per batch item).
    """

    def __init__(self, path: str, *, actor: str = "playfix"):
        self.path = path
        self.actor = actor
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def new_correlation_id(self) -> str:
        return uuid.uuid4().hex

    def write(
        self,
        correlation_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        timestamp: Optional[str] = None,
    ) -> None:
        record = {
            "ts": timestamp or datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
            "actor": self.actor,
            "event_type": event_type,
            "payload": _shrink(payload or {}),
        }
        line = json.dumps(record, ensure_ascii=False, default=str) + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)

    def bind(self, correlation_id: str) -> EventSink:
        """Return an `on_event(name, payload)` callback writing under one correlation id."""

        def _sink(event_type: str, payload: Dict[str, Any]) -> None:
            self.write(correlation_id, event_type, payload)

        return _sink


def emit(sink: EventSink | None, event_type: str, payload: Dict[str, Any]) -> None:
    if sink is None:
        return
    sink(event_type, payload)
