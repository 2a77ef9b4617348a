"""
Schedule Entry Adapter.

Responsibility:
- Keep interval schedules for stored workflows
- Fire due workflows through the executor with ``trigger_type="schedule"``
- Poll on a fixed cadence until stopped
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from execution.engine import WorkflowExecutor
from shared.workflow_contracts import ExecutionRecord

logger = logging.getLogger(__name__)


@dataclass
class Schedule:
    workflow_id: str
    user_id: str
    interval_seconds: float
    next_run_at: datetime
    last_execution_id: str | None = field(default=None)


class WorkflowScheduler:
    """Interval scheduler that funnels every firing into the executor."""

    def __init__(self, executor: WorkflowExecutor, poll_interval_seconds: float = 1.0):
        self.executor = executor
        self.poll_interval_seconds = max(0.05, float(poll_interval_seconds))
        self._schedules: dict[tuple[str, str], Schedule] = {}
        self._stopped = asyncio.Event()

    def add_schedule(
        self,
        workflow_id: str,
        user_id: str,
        interval_seconds: float,
        start_at: datetime | None = None,
    ) -> Schedule:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        schedule = Schedule(
            workflow_id=workflow_id,
            user_id=user_id,
            interval_seconds=float(interval_seconds),
            next_run_at=start_at or datetime.now(timezone.utc),
        )
        self._schedules[(workflow_id, user_id)] = schedule
        logger.info("Scheduled workflow %s for user %s every %ss", workflow_id, user_id, interval_seconds)
        return schedule

    def remove_schedule(self, workflow_id: str, user_id: str) -> bool:
        return self._schedules.pop((workflow_id, user_id), None) is not None

    def schedules(self) -> list[Schedule]:
        return list(self._schedules.values())

    async def tick(self, now: datetime | None = None) -> list[ExecutionRecord]:
        """Run every schedule that is due at ``now`` and advance it."""
        now = now or datetime.now(timezone.utc)
        due = [schedule for schedule in self._schedules.values() if schedule.next_run_at <= now]
        records: list[ExecutionRecord] = []
        for schedule in due:
            schedule.next_run_at = now + timedelta(seconds=schedule.interval_seconds)
            try:
                record = await self.executor.execute_workflow(
                    schedule.workflow_id,
                    schedule.user_id,
                    trigger_type="schedule",
                    trigger_data={"scheduled_at": now.isoformat()},
                )
            except Exception as exc:
                logger.error("Scheduled run of %s failed: %s", schedule.workflow_id, exc)
                continue
            schedule.last_execution_id = record.execution_id
            records.append(record)
        return records

    async def run_forever(self) -> None:
        self._stopped.clear()
        logger.info("Scheduler started with %d schedule(s)", len(self._schedules))
        while not self._stopped.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stopped.set()
