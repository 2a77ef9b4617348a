import asyncio
import json
import logging
from pathlib import Path
from typing import get_args

import main
from execution.execution_store import ExecutionStore
from shared.workflow_contracts import ExecutionStatus, StepStatus

WORKFLOW = {
    "nodes": [
        {"id": "start", "kind": "trigger"},
        {
            "id": "count",
            "kind": "transform",
            "config": {"transform_type": "aggregate", "source": "{trigger.data}", "operation": "count"},
        },
    ],
    "edges": [{"from_node": "start", "to_node": "count"}],
}


def test_build_executor_registers_every_node_kind(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("INTEGRATION_CREDENTIALS_JSON", raising=False)
    executor = main.build_executor(db_path=str(tmp_path / "cli.db"))
    try:
        assert set(executor.runners) == {"trigger", "action", "condition", "loop", "transform", "ai", "tool", "api"}
    finally:
        executor.close()


def test_register_then_run_and_show(tmp_path: Path, monkeypatch) -> None:
    db_path = str(tmp_path / "cli.db")
    monkeypatch.setattr(main, "DB_PATH", db_path)
    workflow_file = tmp_path / "orders.json"
    workflow_file.write_text(json.dumps(WORKFLOW), encoding="utf-8")

    assert main.cmd_register(str(workflow_file), None, "alice") == 0
    assert asyncio.run(main.cmd_run("orders", "alice", [1, 2, 3], from_file=False)) == 0

    store = ExecutionStore(db_path=db_path)
    try:
        records = store.list_executions("orders", "alice")
    finally:
        store.close()
    assert records[0].step_results["count"] == {"count": 3}

    assert main.cmd_show(records[0].execution_id) == 0
    assert main.cmd_history("orders", "alice", 5) == 0
    assert main.cmd_show("missing") == 1


def test_run_from_file_exit_codes(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(main, "DB_PATH", str(tmp_path / "cli.db"))
    workflow_file = tmp_path / "adhoc.json"
    workflow_file.write_text(json.dumps(WORKFLOW), encoding="utf-8")

    assert asyncio.run(main.cmd_run(str(workflow_file), "alice", [1], from_file=True)) == 0
    assert asyncio.run(main.cmd_run(str(workflow_file), "alice", "not-a-list", from_file=True)) == 0
    assert asyncio.run(main.cmd_run(str(tmp_path / "missing.json"), "alice", None, from_file=True)) == 1


def test_parse_trigger_data_accepts_json_or_text() -> None:
    assert main._parse_trigger_data('{"a": 1}') == {"a": 1}
    assert main._parse_trigger_data("hello") == "hello"
    assert main._parse_trigger_data(None) is None


def test_status_styles_cover_exactly_the_known_statuses() -> None:
    known = set(get_args(ExecutionStatus)) | set(get_args(StepStatus))
    assert set(main._STATUS_STYLES) == known


def test_build_executor_names_api_key_when_ai_provider_missing(tmp_path: Path, monkeypatch, caplog) -> None:
    env_names = ("MODEL_PROVIDER", "MODEL_BASE_URL", "MODEL_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY")
    for name in (*env_names, "INTEGRATION_CREDENTIALS_JSON"):
        monkeypatch.delenv(name, raising=False)
    caplog.set_level(logging.INFO, logger="main")

    executor = main.build_executor(db_path=str(tmp_path / "cli.db"))
    executor.close()

    messages = [record.getMessage() for record in caplog.records if record.name == "main"]
    assert any("MODEL_API_KEY" in message for message in messages)
    assert not any("MODEL_BASE_URL" in message for message in messages)
