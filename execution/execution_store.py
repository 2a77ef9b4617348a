"""Persistent store for workflow definitions, execution records and step records."""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from datetime import datetime, timezone

from shared.workflow_contracts import ExecutionRecord, StepRecord, WorkflowDefinition


class ExecutionStore:
    """SQLite-backed store shared by concurrent runs.

    Every write goes through one lock so independent executions can persist
    from different threads over the shared connection.
    """

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or os.getenv("DB_PATH", "workflows.db")
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level="DEFERRED",
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._init_db()

    def _init_db(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                workflow_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                is_active INTEGER NOT NULL,
                definition_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                record_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_steps (
                execution_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                step_json TEXT NOT NULL,
                PRIMARY KEY (execution_id, step_id)
            )
            """
        )
        self._conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_workflow_executions_workflow_user
            ON workflow_executions(workflow_id, user_id, started_at)
            """
        )
        self._conn.commit()

    # ─── Workflow definitions ──────────────────────────────────

    def save_workflow(self, workflow: WorkflowDefinition) -> None:
        payload = workflow.model_dump(mode="json")
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO workflows (workflow_id, user_id, is_active, definition_json, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(workflow_id) DO UPDATE SET
                    user_id=excluded.user_id,
                    is_active=excluded.is_active,
                    definition_json=excluded.definition_json,
                    updated_at=excluded.updated_at
                """,
                (
                    workflow.workflow_id,
                    workflow.user_id,
                    int(workflow.is_active),
                    json.dumps(payload, ensure_ascii=False),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self._conn.commit()

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        """Raises ``pydantic.ValidationError`` when the stored graph no longer validates."""
        row = self._conn.execute(
            "SELECT definition_json FROM workflows WHERE workflow_id = ?",
            (workflow_id,),
        ).fetchone()
        if row is None:
            return None
        return WorkflowDefinition.model_validate(json.loads(row["definition_json"]))

    def workflow_owner(self, workflow_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT user_id FROM workflows WHERE workflow_id = ?",
            (workflow_id,),
        ).fetchone()
        return None if row is None else str(row["user_id"])

    def list_workflows(self, user_id: str) -> list[WorkflowDefinition]:
        rows = self._conn.execute(
            """
            SELECT definition_json
            FROM workflows
            WHERE user_id = ?
            ORDER BY updated_at DESC
            """,
            (user_id,),
        ).fetchall()
        return [WorkflowDefinition.model_validate(json.loads(row["definition_json"])) for row in rows]

    # ─── Execution records ─────────────────────────────────────

    def save_execution(self, record: ExecutionRecord) -> None:
        payload = record.model_dump(mode="json")
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO workflow_executions
                    (execution_id, workflow_id, user_id, status, started_at, record_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(execution_id) DO UPDATE SET
                    status=excluded.status,
                    record_json=excluded.record_json,
                    updated_at=excluded.updated_at
                """,
                (
                    record.execution_id,
                    record.workflow_id,
                    record.user_id,
                    record.status,
                    payload["started_at"],
                    json.dumps(payload, ensure_ascii=False),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self._conn.commit()

    def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        row = self._conn.execute(
            "SELECT record_json FROM workflow_executions WHERE execution_id = ?",
            (execution_id,),
        ).fetchone()
        if row is None:
            return None
        return ExecutionRecord.model_validate(json.loads(row["record_json"]))

    def list_executions(self, workflow_id: str, user_id: str, limit: int = 50) -> list[ExecutionRecord]:
        rows = self._conn.execute(
            """
            SELECT record_json
            FROM workflow_executions
            WHERE workflow_id = ? AND user_id = ?
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (workflow_id, user_id, max(0, int(limit))),
        ).fetchall()
        return [ExecutionRecord.model_validate(json.loads(row["record_json"])) for row in rows]

    # ─── Step records ──────────────────────────────────────────

    def save_step(self, step: StepRecord) -> None:
        payload = step.model_dump(mode="json")
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO execution_steps (execution_id, step_id, status, started_at, step_json)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(execution_id, step_id) DO UPDATE SET
                    status=excluded.status,
                    step_json=excluded.step_json
                """,
                (
                    step.execution_id,
                    step.step_id,
                    step.status,
                    payload["started_at"],
                    json.dumps(payload, ensure_ascii=False),
                ),
            )
            self._conn.commit()

    def list_steps(self, execution_id: str) -> list[StepRecord]:
        rows = self._conn.execute(
            """
            SELECT step_json
            FROM execution_steps
            WHERE execution_id = ?
            ORDER BY started_at ASC, rowid ASC
            """,
            (execution_id,),
        ).fetchall()
        return [StepRecord.model_validate(json.loads(row["step_json"])) for row in rows]

    def close(self) -> None:
        self._conn.close()
