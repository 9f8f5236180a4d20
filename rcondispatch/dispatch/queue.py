"""Per-target command queue.

Every target id gets one :class:`TargetQueue`. Jobs are appended by any
number of callers but executed by a single drain task, so at most one
command is ever in flight on the target's connection.

**Drain cycle:**

1. Resolve the target configuration (fresh on every activation)
2. Open and authenticate a session; failure rejects every pending job
3. Run jobs in FIFO order, commands in submission order
4. Disconnect once the queue is empty

Jobs appended while the session is being closed start a new activation
instead of waiting for the next caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TYPE_CHECKING

from rcondispatch.rconclient import (
    ConnectError,
    ConnectFailedError,
    DispatcherShutdownError,
    JobResult,
    TargetNotFoundError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rcondispatch.rconclient import CommandResult, RCONSession, TargetConfig

    from .job import Job

    TargetLookup = Callable[[str], Awaitable[TargetConfig | None]]
    SessionFactory = Callable[[TargetConfig], RCONSession]

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class TargetQueue:
    """Ordered, single-consumer job queue bound to one target id."""

    def __init__(
        self,
        target_id: str,
        lookup: TargetLookup,
        session_factory: SessionFactory,
        on_purge: Callable[[TargetQueue], None] | None = None,
    ) -> None:
        """Initialize an idle queue.

        :param target_id: The target every job of this queue is sent to
        :param lookup: Resolves the target configuration on each activation
        :param session_factory: Creates the transport session for a target
        :param on_purge: Called when the queue must leave the registry
        """
        self.target_id = target_id
        self._lookup = lookup
        self._session_factory = session_factory
        self._on_purge = on_purge
        self._pending: deque[Job] = deque()
        self._current: Job | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self.idle_since = time.monotonic()

    @property
    def processing(self) -> bool:
        return self._drain_task is not None

    @property
    def drain_task(self) -> asyncio.Task[None] | None:
        return self._drain_task

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def enqueue(self, job: Job) -> None:
        """Append a job and start draining if no drain is active.

        :param job: The job to run against this queue's target
        """
        self._pending.append(job)
        if self._drain_task is None:
            self._drain_task = asyncio.create_task(
                self._drain(),
                name=f"rcon-drain-{self.target_id}",
            )
            self._drain_task.add_done_callback(self._on_drain_done)

    def _on_drain_done(self, task: asyncio.Task[None]) -> None:
        """Release the drain slot once the task has finished.

        A task cancelled before its first step never runs the body of
        :meth:`_drain`, so its jobs are rejected here.
        """
        if self._drain_task is not None and self._drain_task is not task:
            return

        self._drain_task = None
        self.idle_since = time.monotonic()

        if task.cancelled():
            rejected = self._fail_pending(
                lambda: DispatcherShutdownError("Dispatcher shut down"),
            )
            if rejected:
                LOGGER.warning(
                    "Queue %s: cancelled before starting, rejected %d jobs",
                    self.target_id,
                    rejected,
                )

    def _purge(self) -> None:
        if self._on_purge is not None:
            self._on_purge(self)

    def _fail_pending(self, error_factory: Callable[[], BaseException]) -> int:
        """Reject the in-flight job and every pending job.

        :return: Number of jobs rejected
        """
        jobs = list(self._pending)
        self._pending.clear()
        if self._current is not None:
            jobs.insert(0, self._current)
            self._current = None

        for job in jobs:
            job.set_job_error(error_factory())
        return len(jobs)

    async def _drain(self) -> None:
        LOGGER.debug("Queue %s: drain starting", self.target_id)
        try:
            while self._pending:
                if not await self._activate():
                    return
        except asyncio.CancelledError:
            rejected = self._fail_pending(
                lambda: DispatcherShutdownError("Dispatcher shut down"),
            )
            LOGGER.warning(
                "Queue %s: cancelled with %d unfinished jobs",
                self.target_id,
                rejected,
            )
            raise
        except Exception as e:
            LOGGER.exception("Queue %s: drain failed unexpectedly", self.target_id)
            self._fail_pending(lambda: e)
            self._purge()
        finally:
            self._drain_task = None
            self.idle_since = time.monotonic()
            LOGGER.debug("Queue %s: drain finished", self.target_id)

    async def _activate(self) -> bool:
        """Run one connect-drain-disconnect cycle.

        :return: False if the queue was purged and must stop
        """
        target = await self._lookup(self.target_id)
        if target is None:
            rejected = self._fail_pending(lambda: TargetNotFoundError(self.target_id))
            LOGGER.warning(
                "Queue %s: target not found, rejected %d jobs",
                self.target_id,
                rejected,
            )
            self._purge()
            return False

        session = self._session_factory(target)
        try:
            await session.connect()
        except ConnectError as e:

            def connect_failed() -> ConnectFailedError:
                error = ConnectFailedError(f"RCON connect failed: {e}")
                error.__cause__ = e
                return error

            rejected = self._fail_pending(connect_failed)
            LOGGER.error(
                "Queue %s: RCON connect failed (%s), rejected %d jobs",
                self.target_id,
                e,
                rejected,
            )
            self._purge()
            return False

        try:
            while self._pending:
                job = self._pending.popleft()
                self._current = job
                job_result = await self._run_job(session, job)
                self._current = None
                job.set_job_result(job_result)
        finally:
            await session.disconnect()

        return True

    async def _run_job(self, session: RCONSession, job: Job) -> JobResult:
        """Send every command of a job in order.

        :param session: The connected session for this target
        :param job: The job to run
        :return: The ordered command results
        """
        LOGGER.debug(
            "Queue %s: processing job with %d commands",
            self.target_id,
            len(job.commands),
        )
        results: list[CommandResult] = []
        for index, command in enumerate(job.commands):
            if index and job.delay:
                await asyncio.sleep(job.delay)

            result = await session.send(command)
            results.append(result)

            if not result.ok and job.stop_on_fail:
                LOGGER.info(
                    "Queue %s: stopping job after failed command %r",
                    self.target_id,
                    command,
                )
                break

        return JobResult(results)
