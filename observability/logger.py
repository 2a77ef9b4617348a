"""
Observability Layer: Structured execution events & timings.

Responsibility:
- Emit workflow events as single-line JSON on the ``observability`` logger
- Time node executions (``execution_metric`` events)
- Correlate entries by session (user) and trace (execution) ids
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

logger = logging.getLogger("observability")


class Observability:
    """Structured logger bound to one workflow execution."""

    def __init__(self, session_id: str | None = None, trace_id: str | None = None):
        self.session_id = session_id or str(uuid.uuid4())
        self.trace_id = trace_id or str(uuid.uuid4())

    @classmethod
    def for_execution(cls, user_id: str, execution_id: str) -> "Observability":
        return cls(session_id=user_id, trace_id=execution_id)

    def log_event(self, event_type: str, payload: dict[str, Any], level: str = "INFO") -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "trace_id": self.trace_id,
            "event": event_type,
            "level": level,
        }
        record.update(payload)
        emit = getattr(logger, level.lower(), logger.info)
        emit(json.dumps(record, default=str))

    @contextmanager
    def measure(self, operation: str, metadata: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Time a block and log one ``execution_metric`` event for it.

        The yielded dict becomes the event payload. Callers whose block reports
        failure without raising set ``success`` and ``error`` on it; an escaping
        exception does so automatically. ``duration_ms`` is filled in on exit.
        """
        metric: dict[str, Any] = {"operation": operation, "success": True, "error": None}
        metric.update(metadata or {})
        started = time.perf_counter()
        try:
            yield metric
        except Exception as exc:
            metric["success"] = False
            metric["error"] = str(exc) or type(exc).__name__
            raise
        finally:
            metric["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            self.log_event("execution_metric", metric, level="INFO" if metric["success"] else "WARNING")
