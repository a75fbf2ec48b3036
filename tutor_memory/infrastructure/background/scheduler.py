# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler for periodic memory maintenance.

Uses APScheduler for cron and interval triggers; each trigger only sends a
message to a Dramatiq actor, the work itself happens in the workers.

Default jobs (start_scheduler):
    consolidation_sweep      every 24 hours
    decay_sweep              every 24 hours
    cleanup_stale_memories   weekly, Sunday 03:00
    memory_health_check      every hour

Example:
    from tutor_memory.infrastructure.background.scheduler import get_scheduler

    scheduler = get_scheduler()
    await scheduler.start()
    scheduler.add_interval_task(
        name="Decay Sweep",
        actor_name="decay_sweep",
        hours=24,
    )
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """Configuration for a scheduled Dramatiq task.

    Attributes:
        id: Unique task identifier.
        name: Human-readable task name.
        actor_name: Name of the Dramatiq actor to call.
        args: Positional arguments for the actor.
        kwargs: Keyword arguments for the actor.
        enabled: Whether the task is enabled.
        last_run: Last run timestamp.
        run_count: Total number of runs.
        error_count: Number of failed runs.
    """

    name: str
    actor_name: str
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "actor_name": self.actor_name,
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


class DramatiqScheduler:
    """Scheduler for periodic Dramatiq task execution.

    Attributes:
        _scheduler: APScheduler instance.
        _tasks: Dictionary of scheduled tasks.
        _running: Whether scheduler is running.
    """

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def _get_actor(self, actor_name: str) -> Callable[..., Any] | None:
        from tutor_memory.infrastructure.background import tasks

        return getattr(tasks, actor_name, None)

    def add_cron_task(
        self,
        name: str,
        actor_name: str,
        cron_expression: str,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> ScheduledTask:
        """Add a cron-scheduled task.

        Args:
            name: Task name.
            actor_name: Dramatiq actor to call.
            cron_expression: Cron expression (minute hour day month weekday).
            args: Actor arguments.
            kwargs: Actor keyword arguments.
            enabled: Whether task is enabled.

        Returns:
            Created ScheduledTask.

        Raises:
            ValueError: If the cron expression does not have five fields.
        """
        parts = cron_expression.split()
        if len(parts) != 5:
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        task = ScheduledTask(
            name=name,
            actor_name=actor_name,
            args=args,
            kwargs=kwargs or {},
            enabled=enabled,
        )
        self._tasks[task.id] = task

        if self._scheduler and enabled:
            trigger = CronTrigger(
                minute=parts[0],
                hour=parts[1],
                day=parts[2],
                month=parts[3],
                day_of_week=parts[4],
            )
            self._scheduler.add_job(
                self._execute_task,
                trigger=trigger,
                args=[task.id],
                id=task.id,
                name=name,
            )

        logger.info("Added cron task: %s (%s)", name, cron_expression)
        return task

    def add_interval_task(
        self,
        name: str,
        actor_name: str,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledTask:
        """Add an interval-scheduled task.

        Args:
            name: Task name.
            actor_name: Dramatiq actor to call.
            seconds: Interval seconds.
            minutes: Interval minutes.
            hours: Interval hours.
            args: Actor arguments.
            kwargs: Actor keyword arguments.
            enabled: Whether task is enabled.
            start_immediately: Run immediately on start.

        Returns:
            Created ScheduledTask.
        """
        task = ScheduledTask(
            name=name,
            actor_name=actor_name,
            args=args,
            kwargs=kwargs or {},
            enabled=enabled,
        )
        self._tasks[task.id] = task

        if self._scheduler and enabled:
            trigger = IntervalTrigger(seconds=seconds, minutes=minutes, hours=hours)
            next_run = datetime.now(timezone.utc) if start_immediately else None

            job_options: dict[str, Any] = {}
            if next_run is not None:
                job_options["next_run_time"] = next_run

            self._scheduler.add_job(
                self._execute_task,
                trigger=trigger,
                args=[task.id],
                id=task.id,
                name=name,
                **job_options,
            )

        logger.info(
            "Added interval task: %s (every %dh %dm %ds)",
            name,
            hours,
            minutes,
            seconds,
        )
        return task

    async def _execute_task(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if not task or not task.enabled:
            return

        logger.debug("Executing scheduled task: %s", task.name)

        try:
            actor = self._get_actor(task.actor_name)
            if actor is None:
                raise ValueError(f"Actor not found: {task.actor_name}")

            actor.send(*task.args, **task.kwargs)

            task.last_run = datetime.now(timezone.utc)
            task.run_count += 1
            logger.debug("Scheduled task %s sent to queue", task.name)

        except Exception as e:
            task.error_count += 1
            logger.error("Scheduled task %s failed: %s", task.name, str(e))

    def remove_task(self, task_id: str) -> bool:
        if task_id not in self._tasks:
            return False

        if self._scheduler:
            try:
                self._scheduler.remove_job(task_id)
            except JobLookupError:
                logger.debug("Task %s had no scheduled job", task_id)

        del self._tasks[task_id]
        logger.info("Removed scheduled task: %s", task_id)
        return True

    def enable_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if not task:
            return False

        task.enabled = True
        if self._scheduler:
            try:
                self._scheduler.resume_job(task_id)
            except JobLookupError:
                logger.debug("Task %s had no scheduled job", task_id)
        return True

    def disable_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if not task:
            return False

        task.enabled = False
        if self._scheduler:
            try:
                self._scheduler.pause_job(task_id)
            except JobLookupError:
                logger.debug("Task %s had no scheduled job", task_id)
        return True

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        """Start the scheduler. Must be called from a running event loop."""
        if self._running:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.start()
        self._running = True

        logger.info("Dramatiq scheduler started")

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Dramatiq scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "task_count": len(self._tasks),
            "enabled_count": sum(1 for t in self._tasks.values() if t.enabled),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }


_scheduler: DramatiqScheduler | None = None


def get_scheduler() -> DramatiqScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DramatiqScheduler()
    return _scheduler


def register_memory_jobs(scheduler: DramatiqScheduler) -> list[ScheduledTask]:
    """Register the periodic memory maintenance jobs.

    Returns:
        The registered tasks.
    """
    return [
        scheduler.add_interval_task(
            name="Consolidation Sweep",
            actor_name="consolidation_sweep",
            hours=24,
        ),
        scheduler.add_interval_task(
            name="Decay Sweep",
            actor_name="decay_sweep",
            hours=24,
        ),
        scheduler.add_cron_task(
            name="Weekly Stale Memory Cleanup",
            actor_name="cleanup_stale_memories",
            # APScheduler numbers weekdays from Monday, so name the day
            cron_expression="0 3 * * sun",
        ),
        scheduler.add_interval_task(
            name="Memory Health Check",
            actor_name="memory_health_check",
            hours=1,
        ),
    ]


async def start_scheduler() -> DramatiqScheduler:
    """Start the scheduler and register the memory jobs."""
    scheduler = get_scheduler()
    await scheduler.start()

    if scheduler.is_running:
        register_memory_jobs(scheduler)
        logger.info("Registered %d default scheduled tasks", len(scheduler.list_tasks()))

    return scheduler


async def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
