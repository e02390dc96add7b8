"""
Cron scheduler for the feed pipelines.

A single timing loop owns the job list. It sleeps until the earliest next
trigger, spawns every due job on a worker pool, reschedules the fired jobs and
goes back to sleep. Cron expressions are parsed with APScheduler's
``CronTrigger``; the loop itself does not use an APScheduler scheduler.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Callable, Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from feed_mailer.config import get_config
from feed_mailer.errors import InvalidArgumentError, error_code
from feed_mailer.logger import get_logger

logger = get_logger(__name__)

# Wait used when nothing is scheduled; keeps the loop responsive to stop requests
IDLE_WAIT = timedelta(hours=100_000)

_DESCRIPTORS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


class Job(Protocol):
    """A unit of scheduled work."""

    @property
    def name(self) -> str: ...

    def run(self, cancel: Optional[threading.Event] = None) -> object: ...


class Schedule(Protocol):
    """A recurrence rule."""

    def next(self, after: datetime) -> Optional[datetime]:
        """Next trigger time strictly after ``after``, or None if there is none."""
        ...


class CronSchedule:
    """Standard 5-field cron expression."""

    def __init__(self, spec: str, timezone: tzinfo):
        """Parse a cron expression.

        Args:
            spec: Cron expression or one of the @descriptors
            timezone: Timezone the expression is evaluated in

        Raises:
            InvalidArgumentError: If the expression is malformed
        """
        self.spec = spec
        expression = _DESCRIPTORS.get(spec.strip().lower(), spec)
        try:
            self._trigger = CronTrigger.from_crontab(expression, timezone=timezone)
        except ValueError as e:
            raise InvalidArgumentError(f"invalid cron spec {spec!r}", cause=e) from e

    def next(self, after: datetime) -> Optional[datetime]:
        # CronTrigger includes its start point, so step past ``after``
        return self._trigger.get_next_fire_time(None, after + timedelta(microseconds=1))

    def __repr__(self) -> str:
        return f"<CronSchedule({self.spec!r})>"


@dataclass(eq=False)
class CronJob:
    """A job bound to its schedule; ``next``/``prev`` are None until computed."""

    job: Job
    schedule: Schedule
    next: Optional[datetime] = None
    prev: Optional[datetime] = None


class SchedulerState(str, Enum):
    """Lifecycle of the scheduler."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""

    total_jobs: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    last_execution_time: Optional[datetime] = None


def _by_next(cron_job: CronJob):
    # Unset next sorts after every set value
    return (cron_job.next is None, cron_job.next or datetime.min)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Resolve a timezone name.

    Raises:
        InvalidArgumentError: If the timezone is unknown
    """
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidArgumentError(f"unknown timezone {name!r}", cause=e) from e


class Scheduler:
    """Cron scheduler running each fired job on a worker pool."""

    def __init__(
        self,
        timezone: Optional[str] = None,
        max_workers: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the scheduler.

        Args:
            timezone: Timezone cron expressions are evaluated in (default from config)
            max_workers: Maximum number of concurrent job runs (default from config)
            clock: Source of the current time (aware datetimes)
        """
        config = get_config()

        self.timezone = resolve_timezone(timezone or config.scheduler.timezone)
        self.max_workers = max_workers or config.scheduler.max_workers
        self.clock = clock or (lambda: datetime.now(self.timezone))

        self._jobs: list[CronJob] = []
        self._lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._cancel: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

        self.stats = SchedulerStats()
        self._stats_lock = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    @property
    def jobs(self) -> list[CronJob]:
        """Registered jobs, in the loop's current order."""
        return list(self._jobs)

    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def schedule(self, spec: str, job: Job) -> CronJob:
        """Register a job with a cron expression.

        Must be called before ``start``.

        Raises:
            InvalidArgumentError: If the expression is malformed; the job list
                is left unchanged
        """
        return self.add_job(CronSchedule(spec, self.timezone), job)

    def add_job(self, schedule: Schedule, job: Job) -> CronJob:
        """Register a job with an already built schedule."""
        cron_job = CronJob(job=job, schedule=schedule)
        self._jobs.append(cron_job)
        self.stats.total_jobs = len(self._jobs)
        logger.debug(f"Scheduled job {job.name} with {schedule!r}")
        return cron_job

    def start(self, cancel: Optional[threading.Event] = None) -> threading.Event:
        """Start the timing loop on its own thread.

        A second call while the scheduler is running is a no-op.

        Args:
            cancel: Event that stops the loop when set (created if omitted)

        Returns:
            The event the loop observes
        """
        with self._lock:
            if self._state is not SchedulerState.IDLE:
                logger.warning("Scheduler is already running")
                return self._cancel

            self._state = SchedulerState.RUNNING
            self._cancel = cancel or threading.Event()
            self._ensure_executor()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._cancel,),
                name="feed-scheduler",
                daemon=True,
            )
            self._thread.start()

        logger.info(f"Scheduler started with {len(self._jobs)} jobs and {self.max_workers} workers")
        return self._cancel

    def stop(self) -> None:
        """Stop the loop and wait for every spawned job run to finish."""
        with self._lock:
            if self._state is SchedulerState.IDLE and self._executor is None:
                logger.warning("Scheduler is not running")
                return
            cancel, thread, executor = self._cancel, self._thread, self._executor

        if cancel is not None:
            cancel.set()
        if thread is not None:
            thread.join()
        if executor is not None:
            executor.shutdown(wait=True)

        with self._lock:
            self._state = SchedulerState.IDLE
            self._thread = None
            self._executor = None
            self._cancel = None

        logger.info("Scheduler stopped")

    def get_stats(self) -> SchedulerStats:
        with self._stats_lock:
            return SchedulerStats(**vars(self.stats))

    def prime(self, now: datetime) -> None:
        """Compute the first trigger of every job."""
        for cron_job in self._jobs:
            cron_job.next = cron_job.schedule.next(now)
            logger.info(f"Schedule job {cron_job.job.name}: now {now}, next {cron_job.next}")
        self._sort()

    def run_pending(self, now: datetime) -> list[CronJob]:
        """Fire every job due at ``now`` and reschedule it.

        Returns:
            The fired jobs, in firing order
        """
        self._sort()

        fired = []
        for cron_job in self._jobs:
            if cron_job.next is None or cron_job.next > now:
                break
            self._spawn(cron_job.job)
            cron_job.prev = cron_job.next
            cron_job.next = cron_job.schedule.next(now)
            fired.append(cron_job)
            logger.info(f"Schedule job {cron_job.job.name}: now {now}, next {cron_job.next}")

        self._sort()
        return fired

    def next_delay(self) -> float:
        """Seconds until the earliest trigger."""
        if not self._jobs or self._jobs[0].next is None:
            return min(IDLE_WAIT.total_seconds(), threading.TIMEOUT_MAX)
        return max((self._jobs[0].next - self.clock()).total_seconds(), 0.0)

    def _sort(self) -> None:
        self._jobs.sort(key=_by_next)

    def _run(self, cancel: threading.Event) -> None:
        self.prime(self.clock())

        while not cancel.wait(self.next_delay()):
            now = self.clock()
            logger.debug(f"Scheduler wake at {now}")
            self.run_pending(now)

        with self._lock:
            self._state = SchedulerState.STOPPING
        logger.info("Scheduler loop stopped")

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="feed-job",
            )
        return self._executor

    def _spawn(self, job: Job) -> Future:
        with self._lock:
            executor = self._ensure_executor()
            cancel = self._cancel
        return executor.submit(self._execute, job, cancel)

    def _execute(self, job: Job, cancel: Optional[threading.Event]) -> None:
        try:
            job.run(cancel)
        except Exception as e:
            logger.error(f"Job {job.name} failed [{error_code(e)}]: {e}")
            with self._stats_lock:
                self.stats.total_executions += 1
                self.stats.failed_executions += 1
                self.stats.last_execution_time = self.clock()
            return

        with self._stats_lock:
            self.stats.total_executions += 1
            self.stats.successful_executions += 1
            self.stats.last_execution_time = self.clock()
