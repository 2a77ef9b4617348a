"""
Workflow Engine: Main CLI Entrypoint.

Wires the execution store, runners and integrations, and exposes commands to
register, run, inspect, schedule and serve workflows.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from entry.scheduler import WorkflowScheduler
from execution.engine import WorkflowExecutor, build_default_runners, external_call_timeout_from_env
from execution.execution_store import ExecutionStore
from integrations.ai_provider import HttpAIProvider
from integrations.credentials import EnvCredentialProvider
from integrations.email_transport import HttpEmailTransport
from shared.workflow_contracts import ExecutionRecord, StepRecord, WorkflowDefinition, WorkflowGraph
from tools.builder import TemplateToolBuilder
from tools.catalog import InMemoryToolCatalog

# ─── Configuration ──────────────────────────────────────────────

logger = logging.getLogger(__name__)

# Ensure local .env is loaded before reading runtime configuration.
load_dotenv(override=False)

DB_PATH = os.getenv("DB_PATH", "workflows.db")
LOG_LEVEL = getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO)
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8080"))
TOOLS_CATALOG_FILE = os.getenv("TOOLS_CATALOG_FILE", "").strip()
DEFAULT_USER_ID = os.getenv("WORKFLOW_DEFAULT_USER_ID", "local").strip() or "local"

# ─── Rich Console ───────────────────────────────────────────────

console = Console()

_STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "running": "cyan",
    "pending": "dim",
}


def setup_logging() -> None:
    """Configure logging."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_executor(db_path: str | None = None) -> WorkflowExecutor:
    """Wire a WorkflowExecutor from environment configuration."""
    catalog = InMemoryToolCatalog.from_file(TOOLS_CATALOG_FILE) if TOOLS_CATALOG_FILE else InMemoryToolCatalog()
    ai_provider = HttpAIProvider.from_env()
    if ai_provider is None:
        logger.info(
            "No AI provider configured; ai nodes will fail until MODEL_API_KEY "
            "(or OPENAI_API_KEY / ANTHROPIC_API_KEY) is set or MODEL_PROVIDER=ollama"
        )

    runners = build_default_runners(
        ai_provider=ai_provider,
        email_transport=HttpEmailTransport(),
        tool_catalog=catalog,
        tool_builder=TemplateToolBuilder(),
        timeout_seconds=external_call_timeout_from_env(),
    )
    return WorkflowExecutor(
        ExecutionStore(db_path=db_path or DB_PATH),
        runners=runners,
        credentials=EnvCredentialProvider(),
    )


def _load_json_file(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _parse_trigger_data(raw_value: str | None) -> Any:
    if raw_value is None:
        return None
    try:
        return json.loads(raw_value)
    except json.JSONDecodeError:
        return raw_value


def _short(value: Any, limit: int = 60) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str, ensure_ascii=False)
    return text if len(text) <= limit else text[: limit - 3] + "..."


# ─── Rendering ──────────────────────────────────────────────────


def render_record(record: ExecutionRecord) -> None:
    """Render an execution record summary with its step outputs."""
    style = _STATUS_STYLES.get(record.status, "white")
    summary = Text()
    summary.append(f"{record.status.upper()}", style=f"bold {style}")
    summary.append(f"  execution={record.execution_id}  workflow={record.workflow_id}")
    if record.duration_ms is not None:
        summary.append(f"  {record.duration_ms:.0f}ms", style="dim")
    if record.error:
        summary.append(f"\n{record.error}", style="red")
        if record.error_step_id:
            summary.append(f" (step {record.error_step_id})", style="dim")

    console.print()
    console.print(Panel(summary, title="Execution", border_style=style, box=box.ROUNDED))

    if record.step_results:
        table = Table(title="Step outputs", box=box.SIMPLE_HEAVY, header_style="bold cyan")
        table.add_column("Step", style="bold white")
        table.add_column("Output", style="white")
        for step_id, output in record.step_results.items():
            table.add_row(step_id, json.dumps(output, indent=2, default=str, ensure_ascii=False))
        console.print(table)


def render_steps(steps: list[StepRecord]) -> None:
    table = Table(title="Steps", box=box.SIMPLE_HEAVY, header_style="bold cyan")
    table.add_column("Step", style="bold white")
    table.add_column("Kind", style="magenta")
    table.add_column("Status")
    table.add_column("Duration", justify="right", style="dim")
    table.add_column("Error / Output")
    for step in steps:
        style = _STATUS_STYLES.get(step.status, "white")
        duration = f"{step.duration_ms:.0f}ms" if step.duration_ms is not None else ""
        detail = step.error if step.error else _short(step.output)
        table.add_row(step.step_id, step.node_kind, f"[{style}]{step.status}[/]", duration, detail)
    console.print(table)


def render_history(records: list[ExecutionRecord]) -> None:
    table = Table(title="Execution history", box=box.SIMPLE_HEAVY, header_style="bold cyan")
    table.add_column("Execution", style="bold white")
    table.add_column("Trigger", style="magenta")
    table.add_column("Status")
    table.add_column("Started", style="dim")
    table.add_column("Error", style="red")
    for record in records:
        style = _STATUS_STYLES.get(record.status, "white")
        table.add_row(
            record.execution_id,
            record.trigger_type,
            f"[{style}]{record.status}[/]",
            record.started_at.isoformat(timespec="seconds"),
            record.error or "",
        )
    console.print(table)


# ─── Commands ───────────────────────────────────────────────────


def cmd_register(path: str, workflow_id: str | None, user_id: str) -> int:
    try:
        payload = _load_json_file(path)
        if "graph" not in payload:
            payload = {"graph": payload}
        payload.setdefault("workflow_id", workflow_id or Path(path).stem)
        payload.setdefault("user_id", user_id)
        if workflow_id:
            payload["workflow_id"] = workflow_id
        workflow = WorkflowDefinition.model_validate(payload)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        console.print(f"[bold red]Error:[/] could not load workflow: {exc}")
        return 1

    store = ExecutionStore(db_path=DB_PATH)
    try:
        store.save_workflow(workflow)
    finally:
        store.close()
    console.print(
        f"[bold green]Registered workflow:[/] {workflow.workflow_id} "
        f"({len(workflow.graph.nodes)} nodes, {len(workflow.graph.edges)} edges)"
    )
    return 0


async def cmd_run(target: str, user_id: str, trigger_data: Any, from_file: bool) -> int:
    executor = build_executor()
    try:
        if from_file:
            try:
                raw = _load_json_file(target)
                graph = WorkflowGraph.model_validate(raw.get("graph", raw))
            except (OSError, json.JSONDecodeError, ValidationError) as exc:
                console.print(f"[bold red]Error:[/] invalid workflow file: {exc}")
                return 1
            record = await executor.execute_graph(
                graph,
                workflow_id=Path(target).stem,
                user_id=user_id,
                trigger_data=trigger_data,
            )
        else:
            record = await executor.execute_workflow(target, user_id, trigger_data=trigger_data)
    finally:
        executor.close()
    render_record(record)
    return 0 if record.status == "completed" else 1


def cmd_history(workflow_id: str, user_id: str, limit: int) -> int:
    store = ExecutionStore(db_path=DB_PATH)
    try:
        records = store.list_executions(workflow_id, user_id, limit=limit)
    finally:
        store.close()
    if not records:
        console.print(f"[dim]No executions recorded for {workflow_id}.[/]")
        return 0
    render_history(records)
    return 0


def cmd_show(execution_id: str) -> int:
    store = ExecutionStore(db_path=DB_PATH)
    try:
        record = store.get_execution(execution_id)
        steps = store.list_steps(execution_id) if record is not None else []
    finally:
        store.close()
    if record is None:
        console.print(f"[bold red]Error:[/] execution not found: {execution_id}")
        return 1
    render_record(record)
    render_steps(steps)
    return 0


async def cmd_schedule(workflow_id: str, user_id: str, interval_seconds: float) -> None:
    executor = build_executor()
    scheduler = WorkflowScheduler(executor)
    scheduler.add_schedule(workflow_id, user_id, interval_seconds)
    console.print(f"[bold green]Scheduling[/] {workflow_id} every {interval_seconds}s (Ctrl+C to stop)")
    try:
        await scheduler.run_forever()
    finally:
        executor.close()


def cmd_serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("api.server:app", host=host, port=port, log_level=logging.getLevelName(LOG_LEVEL).lower())


def main() -> None:
    """Entrypoint with CLI args."""
    setup_logging()

    parser = argparse.ArgumentParser(description="Workflow Engine")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run a stored workflow (or a workflow JSON file with --file)")
    run_parser.add_argument("target", help="Workflow id, or path to a workflow JSON file with --file")
    run_parser.add_argument("--file", action="store_true", help="Treat target as a workflow JSON file")
    run_parser.add_argument("--user", default=DEFAULT_USER_ID, help="Owning user id")
    run_parser.add_argument("--data", default=None, help="Trigger data (JSON or text)")

    register_parser = subparsers.add_parser("register", help="Store a workflow definition")
    register_parser.add_argument("path", help="Path to a workflow JSON file")
    register_parser.add_argument("--id", dest="workflow_id", default=None, help="Workflow id (default: file name)")
    register_parser.add_argument("--user", default=DEFAULT_USER_ID, help="Owning user id")

    history_parser = subparsers.add_parser("history", help="List recent executions of a workflow")
    history_parser.add_argument("workflow_id", help="Workflow id")
    history_parser.add_argument("--user", default=DEFAULT_USER_ID, help="Owning user id")
    history_parser.add_argument("--limit", type=int, default=20, help="Max results")

    show_parser = subparsers.add_parser("show", help="Show one execution with its steps")
    show_parser.add_argument("execution_id", help="Execution id")

    schedule_parser = subparsers.add_parser("schedule", help="Run a stored workflow on an interval")
    schedule_parser.add_argument("workflow_id", help="Workflow id")
    schedule_parser.add_argument("--every", type=float, required=True, help="Interval in seconds")
    schedule_parser.add_argument("--user", default=DEFAULT_USER_ID, help="Owning user id")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=API_HOST)
    serve_parser.add_argument("--port", type=int, default=API_PORT)

    args = parser.parse_args()

    if args.command == "run":
        code = asyncio.run(cmd_run(args.target, args.user, _parse_trigger_data(args.data), args.file))
    elif args.command == "register":
        code = cmd_register(args.path, args.workflow_id, args.user)
    elif args.command == "history":
        code = cmd_history(args.workflow_id, args.user, args.limit)
    elif args.command == "show":
        code = cmd_show(args.execution_id)
    elif args.command == "schedule":
        try:
            asyncio.run(cmd_schedule(args.workflow_id, args.user, args.every))
        except KeyboardInterrupt:
            pass
        code = 0
    elif args.command == "serve":
        cmd_serve(args.host, args.port)
        code = 0
    else:
        parser.print_help()
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
