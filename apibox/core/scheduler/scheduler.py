"""Scheduler — named recurring jobs on the event loop.

Each started job runs its own loop task. Instead of sleeping for a whole
period, the loop re-checks ``next_run_at - now`` at most every
``wait_cap_ms`` (one minute by default), so a clock jump or a suspended
process delays a slot by no more than the cap. After each firing the next
slot is derived from the previous slot, not from the finish time, which
keeps hour-aligned jobs on ``HH:00:00``.

A job whose handler fails ``max_errors`` times in a row is disabled and
stays disabled until it is explicitly started again.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

import structlog

from apibox.core.cache.store import Clock, now_ms

logger = structlog.get_logger()

HOUR_MS = 3_600_000
ONE_MINUTE_MS = 60_000

Handler = Callable[[], Awaitable[None]]


class JobState(str, Enum):
    IDLE      = "idle"        # added, never started
    SCHEDULED = "scheduled"
    RUNNING   = "running"
    STOPPED   = "stopped"
    DISABLED  = "disabled"    # tripped by max_errors


@dataclass
class ScheduledJob:
    id:                     str
    name:                   str
    interval_ms:            int
    handler:                Handler = field(repr=False)
    align_to_hour_boundary: bool = False
    enabled:                bool = True
    max_errors:             int = 5
    state:                  JobState = JobState.IDLE
    error_count:            int = 0
    total_errors:           int = 0
    last_run_at:            int | None = None
    next_run_at:            int | None = None
    last_error:             str | None = None

    @property
    def hour_aligned(self) -> bool:
        return self.align_to_hour_boundary and self.interval_ms >= HOUR_MS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "interval_ms": self.interval_ms,
            "align_to_hour_boundary": self.align_to_hour_boundary,
            "enabled": self.enabled,
            "state": self.state.value,
            "error_count": self.error_count,
            "max_errors": self.max_errors,
            "total_errors": self.total_errors,
            "last_error": self.last_error,
            "last_run_at": _iso(self.last_run_at),
            "next_run_at": _iso(self.next_run_at),
        }


def _iso(ms: int | None) -> str | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


class Scheduler:

    def __init__(
        self,
        clock: Clock | None = None,
        wait_cap_ms: int = ONE_MINUTE_MS,
        tz: str | ZoneInfo = "UTC",
    ):
        self._clock = clock or now_ms
        self.wait_cap_ms = wait_cap_ms
        self.tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
        self._jobs: dict[str, ScheduledJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._stop_events: dict[str, asyncio.Event] = {}
        self._oneshots: set[asyncio.Task] = set()

    # ── timing ──────────────────────────────────────────────────────────

    def hour_floor(self, ms: int) -> int:
        """Start of the calendar hour containing ``ms`` in the scheduler's zone."""
        dt = datetime.fromtimestamp(ms / 1000, tz=self.tz)
        return int(dt.replace(minute=0, second=0, microsecond=0).timestamp() * 1000)

    def next_hour(self, ms: int) -> int:
        return self.hour_floor(ms) + HOUR_MS

    def initial_run_at(self, job: ScheduledJob, now: int) -> int:
        if job.hour_aligned:
            return self.next_hour(now)
        return now + job.interval_ms

    def following_run_at(self, job: ScheduledJob, slot: int, now: int) -> int:
        """Next slot after ``slot``; slots already in the past are skipped."""
        if job.hour_aligned:
            due = slot + job.interval_ms
            floor = self.hour_floor(due)
            # First :00 at or after the due time.
            nxt = floor if floor == due else floor + HOUR_MS
            return nxt if nxt > now else self.next_hour(now)
        nxt = slot + job.interval_ms
        return nxt if nxt > now else now + job.interval_ms

    # ── registry ────────────────────────────────────────────────────────

    def add_job(
        self,
        id: str,
        interval_ms: int,
        handler: Handler,
        *,
        name: str | None = None,
        enabled: bool = True,
        max_errors: int = 5,
        align_to_hour_boundary: bool = False,
        run_immediately: bool = False,
    ) -> ScheduledJob:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {interval_ms}")
        if max_errors <= 0:
            raise ValueError(f"max_errors must be > 0, got {max_errors}")

        if id in self._jobs:
            self.stop(id)

        job = ScheduledJob(
            id=id,
            name=name or id,
            interval_ms=interval_ms,
            handler=handler,
            align_to_hour_boundary=align_to_hour_boundary,
            enabled=enabled,
            max_errors=max_errors,
        )
        job.next_run_at = self.initial_run_at(job, self._clock())
        self._jobs[id] = job
        logger.info(
            "scheduler.job_added",
            job=id,
            interval_s=interval_ms / 1000,
            aligned=job.hour_aligned,
            next_run_at=_iso(job.next_run_at),
        )

        if run_immediately and enabled:
            self._spawn_oneshot(job)
        return job

    def remove_job(self, id: str) -> bool:
        if id not in self._jobs:
            return False
        self.stop(id)
        del self._jobs[id]
        logger.info("scheduler.job_removed", job=id)
        return True

    # ── lifecycle ───────────────────────────────────────────────────────

    def start(self, id: str) -> bool:
        job = self._jobs.get(id)
        if job is None:
            logger.error("scheduler.job_not_found", job=id)
            return False
        if id in self._tasks:
            logger.warning("scheduler.already_running", job=id)
            return False

        if job.state is JobState.DISABLED:
            job.error_count = 0
            logger.info("scheduler.job_reenabled", job=id)
        job.enabled = True

        now = self._clock()
        if job.next_run_at is None or job.next_run_at <= now:
            job.next_run_at = self.initial_run_at(job, now)
        # A handler still running from a previous loop keeps RUNNING; _execute restores the state.
        if job.state is not JobState.RUNNING:
            job.state = JobState.SCHEDULED

        stop_event = asyncio.Event()
        self._stop_events[id] = stop_event
        self._tasks[id] = asyncio.get_running_loop().create_task(self._loop(job, stop_event), name=f"job:{id}")
        logger.info("scheduler.job_started", job=id, next_run_at=_iso(job.next_run_at))
        return True

    def start_all(self) -> int:
        started = sum(1 for job in list(self._jobs.values()) if job.enabled and self.start(job.id))
        logger.info("scheduler.started", active=started, total=len(self._jobs))
        return started

    def stop(self, id: str) -> None:
        event = self._stop_events.pop(id, None)
        if event is not None:
            event.set()
        self._tasks.pop(id, None)
        job = self._jobs.get(id)
        if job is not None and job.state in (JobState.SCHEDULED, JobState.IDLE):
            job.state = JobState.STOPPED
            logger.info("scheduler.job_stopped", job=id)

    def stop_all(self) -> None:
        for id in list(self._tasks):
            self.stop(id)

    async def shutdown(self) -> None:
        """Stop every job and wait for in-flight handlers to finish."""
        tasks = list(self._tasks.values()) + list(self._oneshots)
        self.stop_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler.shutdown")

    async def run_now(self, id: str) -> bool:
        """Fire a job's handler once, outside its loop. Returns False when skipped."""
        job = self._jobs.get(id)
        if job is None:
            return False
        return await self._execute(job)

    # ── status ──────────────────────────────────────────────────────────

    def get_status(self, id: str) -> ScheduledJob | None:
        return self._jobs.get(id)

    def get_all_statuses(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def is_running(self, id: str) -> bool:
        return id in self._tasks

    def get_stats(self) -> dict:
        jobs = list(self._jobs.values())
        return {
            "total": len(jobs),
            "active": sum(1 for j in jobs if j.state in (JobState.SCHEDULED, JobState.RUNNING)),
            "disabled": sum(1 for j in jobs if j.state is JobState.DISABLED or not j.enabled),
            "ever_errored": sum(1 for j in jobs if j.total_errors > 0),
        }

    # ── internals ───────────────────────────────────────────────────────

    async def _loop(self, job: ScheduledJob, stop_event: asyncio.Event) -> None:
        try:
            while not stop_event.is_set():
                now = self._clock()
                if job.next_run_at is None:
                    job.next_run_at = self.initial_run_at(job, now)

                remaining = job.next_run_at - now
                if remaining <= 0:
                    slot = job.next_run_at
                    await self._execute(job)
                    if job.state is JobState.DISABLED:
                        break
                    job.next_run_at = self.following_run_at(job, slot, self._clock())
                    continue

                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=min(remaining, self.wait_cap_ms) / 1000)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._tasks.get(job.id) is asyncio.current_task():
                del self._tasks[job.id]
                self._stop_events.pop(job.id, None)

    async def _execute(self, job: ScheduledJob) -> bool:
        if not job.enabled or job.state is JobState.DISABLED:
            return False
        if job.state is JobState.RUNNING:
            logger.warning("scheduler.overlap_skipped", job=job.id)
            return False

        resume = job.state
        job.state = JobState.RUNNING
        job.last_run_at = self._clock()
        logger.debug("scheduler.job_running", job=job.id)
        try:
            await job.handler()
        except Exception as e:
            job.error_count += 1
            job.total_errors += 1
            job.last_error = str(e)
            logger.error(
                "scheduler.job_failed",
                job=job.id,
                error=str(e),
                errors=job.error_count,
                max_errors=job.max_errors,
            )
            if job.error_count >= job.max_errors:
                job.state = JobState.DISABLED
                job.enabled = False
                # Wakes the job loop (if any) so it exits at its next checkpoint.
                event = self._stop_events.get(job.id)
                if event is not None:
                    event.set()
                logger.error("scheduler.job_disabled", job=job.id, errors=job.error_count)
                return True
        else:
            job.error_count = 0
            logger.debug("scheduler.job_completed", job=job.id)

        if resume is JobState.SCHEDULED and job.id not in self._tasks:
            resume = JobState.STOPPED
        job.state = resume
        return True

    def _spawn_oneshot(self, job: ScheduledJob) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("scheduler.run_immediately_skipped", job=job.id, reason="no running event loop")
            return
        task = loop.create_task(self._execute(job), name=f"job:{job.id}:now")
        self._oneshots.add(task)
        task.add_done_callback(self._oneshots.discard)
