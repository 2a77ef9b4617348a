"""
HTTP API for the workflow engine.

Endpoints:
- PUT  /v1/workflows/{workflow_id}                 register or replace a workflow
- POST /v1/workflows/{workflow_id}/executions      manual run
- POST /v1/webhooks/{workflow_id}?user_id=...      webhook delivery
- GET  /v1/workflows/{workflow_id}/executions      run history
- GET  /v1/executions/{execution_id}               one run with its steps
- POST /v1/executions/{execution_id}/cancel        cancel a running execution
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Literal

from dotenv import load_dotenv
from fastapi import Body, FastAPI, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from execution.engine import WorkflowExecutor
from shared.workflow_contracts import ExecutionRecord, WorkflowDefinition, WorkflowGraph

load_dotenv(override=False)

logger = logging.getLogger(__name__)

NOT_FOUND = "Workflow not found"


class WorkflowUpsertRequest(BaseModel):
    user_id: str
    name: str = Field(default="")
    description: str = Field(default="")
    is_active: bool = Field(default=True)
    graph: WorkflowGraph


class ExecutionRequest(BaseModel):
    trigger_type: Literal["manual", "event"] = Field(default="manual")
    trigger_data: Any = Field(default=None)


def _record_response(record: ExecutionRecord) -> dict[str, Any]:
    if record.status == "failed" and record.error == NOT_FOUND and not record.step_results:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return record.model_dump(mode="json")


def _executor(request: Request) -> WorkflowExecutor:
    return request.app.state.executor


def create_app(executor: WorkflowExecutor | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if executor is not None:
            yield
            return

        from main import build_executor

        _app.state.executor = build_executor()
        yield
        _app.state.executor.close()

    app = FastAPI(
        title="Workflow Engine API",
        version="0.1.0",
        lifespan=lifespan,
    )
    if executor is not None:
        app.state.executor = executor

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.put("/v1/workflows/{workflow_id}")
    def upsert_workflow(workflow_id: str, payload: WorkflowUpsertRequest, request: Request) -> dict[str, Any]:
        store = _executor(request).store
        owner = store.workflow_owner(workflow_id)
        if owner is not None and owner != payload.user_id:
            raise HTTPException(status_code=404, detail=NOT_FOUND)

        workflow = WorkflowDefinition(
            workflow_id=workflow_id,
            user_id=payload.user_id,
            name=payload.name,
            description=payload.description,
            is_active=payload.is_active,
            graph=payload.graph,
        )
        store.save_workflow(workflow)
        logger.info("Workflow %s saved for user %s", workflow_id, payload.user_id)
        return {
            "workflow_id": workflow_id,
            "user_id": payload.user_id,
            "is_active": workflow.is_active,
            "nodes": len(workflow.graph.nodes),
            "edges": len(workflow.graph.edges),
        }

    @app.post("/v1/workflows/{workflow_id}/executions")
    async def run_workflow(
        workflow_id: str,
        request: Request,
        payload: ExecutionRequest | None = None,
        x_user_id: str = Header(...),
    ) -> dict[str, Any]:
        body = payload or ExecutionRequest()
        record = await _executor(request).execute_workflow(
            workflow_id,
            x_user_id,
            trigger_type=body.trigger_type,
            trigger_data=body.trigger_data,
        )
        return _record_response(record)

    @app.post("/v1/webhooks/{workflow_id}")
    async def deliver_webhook(
        workflow_id: str,
        request: Request,
        user_id: str = Query(...),
        payload: Any = Body(default=None),
    ) -> dict[str, Any]:
        record = await _executor(request).execute_workflow(
            workflow_id,
            user_id,
            trigger_type="webhook",
            trigger_data=payload,
        )
        return _record_response(record)

    @app.get("/v1/workflows/{workflow_id}/executions")
    def list_executions(
        workflow_id: str,
        request: Request,
        x_user_id: str = Header(...),
        limit: int = Query(default=50, ge=1, le=500),
    ) -> dict[str, Any]:
        records = _executor(request).list_executions(workflow_id, x_user_id, limit=limit)
        return {"executions": [record.model_dump(mode="json") for record in records]}

    @app.get("/v1/executions/{execution_id}")
    def get_execution(execution_id: str, request: Request, x_user_id: str = Header(...)) -> dict[str, Any]:
        found = _executor(request).get_execution(execution_id)
        if found is None or found[0].user_id != x_user_id:
            raise HTTPException(status_code=404, detail="Execution not found")
        record, steps = found
        return {
            "execution": record.model_dump(mode="json"),
            "steps": [step.model_dump(mode="json") for step in steps],
        }

    @app.post("/v1/executions/{execution_id}/cancel")
    def cancel_execution(execution_id: str, request: Request, x_user_id: str = Header(...)) -> dict[str, Any]:
        executor_ = _executor(request)
        found = executor_.get_execution(execution_id)
        if found is None or found[0].user_id != x_user_id:
            raise HTTPException(status_code=404, detail="Execution not found")
        return {"execution_id": execution_id, "cancelled": executor_.cancel(execution_id)}

    return app


app = create_app()
