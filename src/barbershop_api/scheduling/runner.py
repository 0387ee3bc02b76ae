"""APScheduler runtime for the loyalty sweep and reminder jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from barbershop_api.db.session import SessionFactory
from barbershop_api.observability.scheduler import get_job_scheduler_store
from barbershop_api.services.push import PushBackend

from .config import JobDefinition, ScheduleConfig, load_job_definitions


class JobScheduler:
    """Register configured jobs and run them with retry/backoff."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        push_backend: PushBackend | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._push_backend = push_backend
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = get_job_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.jobs:
            runner = self._wrap_callable(resolve_task(job.task), job)
            scheduler.add_job(
                runner,
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Registered scheduled job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Job scheduler started", jobs=len(config.jobs), timezone=config.timezone)

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Job scheduler stopped")

    def _job_kwargs(self, func: Callable[..., Awaitable[Any]], job: JobDefinition) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"session_factory": self._session_factory, **job.kwargs}
        if self._push_backend is not None and "push_backend" in inspect.signature(func).parameters:
            kwargs.setdefault("push_backend", self._push_backend)
        return kwargs

    def _wrap_callable(self, func: Callable[..., Awaitable[Any]], job: JobDefinition) -> Callable[[], Awaitable[None]]:
        async def _runner() -> None:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()
            kwargs = self._job_kwargs(func, job)

            for attempt in range(1, job.max_attempts + 1):
                try:
                    summary = await func(**kwargs)
                except Exception as exc:
                    error_message = str(exc)
                    self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error_message)
                    if attempt >= job.max_attempts:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error_message,
                        )
                        logger.exception("Scheduled job failed after retries", job_id=job.id, attempts=attempt)
                        return

                    delay = job.backoff_delay(attempt)
                    self._observability.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                    logger.warning("Scheduled job retrying", job_id=job.id, attempt=attempt + 1, delay_seconds=delay)
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(job.id, job.task, runtime_seconds=runtime_seconds, attempts=attempt)
                logger.info(
                    "Scheduled job completed",
                    job_id=job.id,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                    summary=summary,
                )
                return

        return _runner

    def health(self) -> dict[str, object]:
        snapshot = self._observability.snapshot()
        config_jobs = self._config.jobs if self._config else []
        jobs: list[dict[str, object]] = []
        for job in config_jobs:
            metrics = snapshot.jobs.get(job.id)
            next_run = None
            if self._scheduler is not None:
                scheduled = self._scheduler.get_job(job.id)
                if scheduled is not None and scheduled.next_run_time is not None:
                    next_run = scheduled.next_run_time.isoformat()
            jobs.append(
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "next_run_at": next_run,
                    "metrics": metrics.as_dict() if metrics else None,
                }
            )

        return {
            "running": self.is_running,
            "configured_jobs": len(config_jobs),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


def resolve_task(task_path: str) -> Callable[..., Awaitable[Any]]:
    """Import ``package.module.function`` and check it is a coroutine function."""

    module_name, _, attr = task_path.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {task_path}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {task_path} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {task_path} must be an async function")
    return func


__all__ = ["JobScheduler", "resolve_task"]
