import json
import logging

import pytest

from observability.logger import Observability


def _events(caplog) -> list[dict]:
    return [json.loads(record.getMessage()) for record in caplog.records if record.name == "observability"]


def test_log_event_carries_correlation_ids(caplog) -> None:
    caplog.set_level(logging.INFO, logger="observability")
    obs = Observability.for_execution("alice", "ex-1")

    obs.log_event("execution_started", {"workflow_id": "wf"})

    event = _events(caplog)[-1]
    assert event["event"] == "execution_started"
    assert event["session_id"] == "alice"
    assert event["trace_id"] == "ex-1"
    assert event["workflow_id"] == "wf"


def test_measure_reports_caller_marked_failure(caplog) -> None:
    caplog.set_level(logging.INFO, logger="observability")
    obs = Observability.for_execution("alice", "ex-1")

    with obs.measure("node_execution", {"node_id": "n1"}) as metric:
        metric["success"] = False
        metric["error"] = "boom"

    event = _events(caplog)[-1]
    assert event["event"] == "execution_metric"
    assert event["node_id"] == "n1"
    assert event["success"] is False
    assert event["error"] == "boom"
    assert event["level"] == "WARNING"
    assert metric["duration_ms"] >= 0


def test_measure_records_escaping_exception(caplog) -> None:
    caplog.set_level(logging.INFO, logger="observability")
    obs = Observability()

    with pytest.raises(RuntimeError):
        with obs.measure("op"):
            raise RuntimeError("bad")

    event = _events(caplog)[-1]
    assert event["success"] is False
    assert event["error"] == "bad"
