"""Periodic refresh jobs on the asyncio event loop.

Usage:
    scheduler = RefreshScheduler()
    scheduler.add_job("sensor_refresh", 30, lambda: snapshots.aget(force_refresh=True))
    scheduler.add_teardown(snapshots.detach)
    await scheduler.start()
    ...
    await scheduler.stop()   # cancels every job and runs teardowns
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from coldwatch.cache.timeseries_store import TimeSeriesStore
from coldwatch.config import RefreshSettings
from coldwatch.predictions.service import PredictionService

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Union[Awaitable[object], object]]


@dataclass(frozen=True)
class Job:
    name: str
    interval_s: float
    func: JobFunc


class RefreshScheduler:
    """Runs named jobs at fixed intervals until stopped."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._teardowns: list[Callable[[], object]] = []
        self._runs: dict[str, int] = {}

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def runs(self, name: str) -> int:
        """How many times a job has completed (successfully or not)."""
        return self._runs.get(name, 0)

    def add_job(self, name: str, interval_s: float, func: JobFunc) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        if name in self._jobs:
            raise ValueError(f"Job {name!r} already registered")
        self._jobs[name] = Job(name, interval_s, func)

    def add_teardown(self, func: Callable[[], object]) -> None:
        """Register a callback run on stop(), e.g. unsubscribing a push listener."""
        self._teardowns.append(func)

    async def start(self) -> None:
        """Start every registered job in the background."""
        if self._tasks:
            return
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._run_loop(job), name=f"refresh:{job.name}")
        logger.info("RefreshScheduler started: %s", ", ".join(self._jobs) or "no jobs")

    async def stop(self) -> None:
        """Cancel all jobs, wait for them to finish, then run teardowns."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        teardowns, self._teardowns = self._teardowns, []
        for teardown in teardowns:
            try:
                teardown()
            except Exception:
                logger.exception("Teardown %r failed", teardown)
        logger.info("RefreshScheduler stopped")

    async def _run_loop(self, job: Job) -> None:
        while True:
            await asyncio.sleep(job.interval_s)
            try:
                result = job.func()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Refresh job %s failed", job.name)
            self._runs[job.name] = self._runs.get(job.name, 0) + 1


# ──────────────────────────────────────────────
# Default wiring
# ──────────────────────────────────────────────


def build_scheduler(
    settings: RefreshSettings,
    snapshots: TimeSeriesStore,
    predictions: PredictionService,
    time_range: str = "present",
) -> RefreshScheduler:
    """Scheduler with the cache check, sensor refresh and prediction refresh jobs."""
    scheduler = RefreshScheduler()

    async def cache_check() -> None:
        if snapshots.is_stale():
            await snapshots.aget()

    async def sensor_refresh() -> None:
        await snapshots.aget(force_refresh=True)

    async def prediction_refresh() -> None:
        await asyncio.to_thread(predictions.stats, time_range)

    scheduler.add_job("cache_check", settings.cache_check_s, cache_check)
    scheduler.add_job("sensor_refresh", settings.sensor_refresh_s, sensor_refresh)
    scheduler.add_job("prediction_refresh", settings.prediction_refresh_s, prediction_refresh)
    scheduler.add_teardown(snapshots.detach)
    return scheduler
