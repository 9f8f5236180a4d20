"""Queue registry and dispatcher that route command batches to targets.

The dispatcher is the entry point for the API layer. It owns a
:class:`QueueRegistry` mapping target ids to :class:`TargetQueue` objects,
creates queues on demand, and fans bulk requests out across targets.

**Queue Lifecycle:**

A queue that fails to connect (or whose target vanished) is purged, so the
next request for that target starts from scratch. A queue that drains
successfully stays registered and is reused. Optionally, queues idle for
longer than ``idle_eviction_seconds`` are swept on each enqueue.

**Shutdown Phases:**

1. **Queue Lock**: Disallow new jobs (always happens)
2. **Grace Period**: Let active drains finish with timeout
3. **Cancel**: Cancel remaining drains, failing their jobs
4. **Await**: Wait for cancelled drains to close their sessions with timeout

**Example Usage:**

.. code-block:: python

    async with Dispatcher(DispatcherConfig(), directory.get_target_config) as dispatcher:
        result = await dispatcher.enqueue_commands("1", ["status"])
        bulk = await dispatcher.enqueue_bulk(["1", "2"], ["say hi"])
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Self

from rcondispatch.rconclient import BulkResult, DispatcherClosedError, RCONSession
from rcondispatch.rconclient.connection import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
)

from .job import EnqueueOptions, Job
from .queue import TargetQueue

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from types import TracebackType

    from rcondispatch.rconclient import JobResult, TargetConfig

    from .queue import SessionFactory, TargetLookup

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


@dataclass
class DispatcherConfig:
    """Configure the dispatcher behavior.

    :cvar NO_TIMEOUT: Constant indicating indefinite waiting for phase completion
    :cvar DISABLE: Constant indicating the phase should be skipped

    :param connect_timeout: Seconds allowed for connect and auth handshake
    :param command_timeout: Seconds allowed for one command response,
        None for no timeout
    :param default_delay_ms: Delay between commands when a caller leaves it unset
    :param idle_eviction_seconds: Evict queues idle for longer than this.
        None keeps drained queues registered forever.

    :param grace_period: Seconds to wait for active drains to finish.
        Set to DISABLE to skip graceful processing.
        Set to NO_TIMEOUT for indefinite wait.

    :param await_shutdown_period: Seconds to wait for cancelled drains to stop.
        Set to DISABLE to not wait at all.
        Set to NO_TIMEOUT for indefinite wait.
    """

    NO_TIMEOUT: ClassVar[None] = None
    DISABLE: ClassVar[int] = 0

    connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT
    command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT
    default_delay_ms: int = EnqueueOptions.DEFAULT_DELAY_MS
    idle_eviction_seconds: float | None = None

    grace_period: float | None = field(default=DISABLE)
    await_shutdown_period: float | None = field(default=NO_TIMEOUT)

    @staticmethod
    def valid_shutdown_phase_timeout(timeout: float | None) -> bool:
        """Check a shutdown phase timeout is NO_TIMEOUT, DISABLE, or positive."""
        return timeout is None or timeout >= 0


class QueueRegistry:
    """Map from target id to its queue.

    Only touched from synchronous code running on the event loop thread, so
    a lookup followed by an insert can never interleave with another caller.
    """

    def __init__(self, queue_factory: Callable[[str], TargetQueue]) -> None:
        self._queue_factory = queue_factory
        self._queues: dict[str, TargetQueue] = {}

    def __len__(self) -> int:
        return len(self._queues)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._queues

    def get(self, target_id: str) -> TargetQueue | None:
        return self._queues.get(target_id)

    def get_or_create(self, target_id: str) -> TargetQueue:
        """Return the queue for a target, creating it on first use."""
        queue = self._queues.get(target_id)
        if queue is None:
            queue = self._queue_factory(target_id)
            self._queues[target_id] = queue
            LOGGER.debug("Registered queue for %s", target_id)
        return queue

    def discard(self, queue: TargetQueue) -> None:
        """Remove a queue if it is still the one registered for its target."""
        if self._queues.get(queue.target_id) is queue:
            del self._queues[queue.target_id]
            LOGGER.debug("Purged queue for %s", queue.target_id)

    def queues(self) -> list[TargetQueue]:
        return list(self._queues.values())

    def evict_idle(self, max_idle_seconds: float, now: float | None = None) -> int:
        """Drop queues with no work that have been idle too long.

        :param max_idle_seconds: Idle time after which a queue is dropped
        :param now: Current monotonic time, defaults to ``time.monotonic()``
        :return: Number of queues evicted
        """
        now = time.monotonic() if now is None else now
        stale = [
            queue
            for queue in self._queues.values()
            if not queue.processing
            and queue.pending_count == 0
            and now - queue.idle_since > max_idle_seconds
        ]
        for queue in stale:
            self.discard(queue)
        return len(stale)


class Dispatcher:
    """Entry point for single-target and bulk command delivery.

    Designed to be used as an async context manager so active drains are
    wound down when the application exits.
    """

    def __init__(
        self,
        config: DispatcherConfig,
        lookup: TargetLookup,
        session_factory: SessionFactory | None = None,
    ) -> None:
        """Initialize the dispatcher and its registry.

        :param config: Configuration for the dispatcher
        :param lookup: Resolves a target id to its configuration
        :param session_factory: Creates sessions, defaults to RCONSession
        """
        self.config = config
        self._lookup = lookup
        self._session_factory = session_factory or self._create_session
        self.registry = QueueRegistry(self._create_queue)
        self._shutting_down = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Shut the dispatcher down.

        :param exc_type: Type of exception if raised within context
        :param exc_val: Exception value if raised within context
        :param exc_tb: Description of traceback if exception raised
        """
        await self.shutdown()

    def _create_session(self, target: TargetConfig) -> RCONSession:
        return RCONSession(
            target,
            connect_timeout=self.config.connect_timeout,
            command_timeout=self.config.command_timeout,
        )

    def _create_queue(self, target_id: str) -> TargetQueue:
        return TargetQueue(
            target_id,
            self._lookup,
            self._session_factory,
            on_purge=self.registry.discard,
        )

    @property
    def queue_count(self) -> int:
        return len(self.registry)

    def active_targets(self) -> list[str]:
        """Return the target ids whose queues are currently draining."""
        return [queue.target_id for queue in self.registry.queues() if queue.processing]

    def submit(
        self,
        target_id: str,
        commands: Iterable[str],
        options: EnqueueOptions | None = None,
    ) -> Job:
        """Queue a batch of commands without waiting for it.

        :param target_id: Target to run the commands on
        :param commands: Commands to send, in order
        :param options: Stop-on-fail and delay options
        :return: The queued job; await :meth:`Job.get_job_result` for the outcome
        :raises DispatcherClosedError: If the dispatcher is shutting down
        """
        if self._shutting_down:
            msg = "Dispatcher is shutting down"
            raise DispatcherClosedError(msg)

        if self.config.idle_eviction_seconds is not None:
            evicted = self.registry.evict_idle(self.config.idle_eviction_seconds)
            if evicted:
                LOGGER.debug("Evicted %d idle queues", evicted)

        job = Job.create(list(commands), options, self.config.default_delay_ms)
        self.registry.get_or_create(target_id).enqueue(job)
        return job

    async def enqueue_commands(
        self,
        target_id: str,
        commands: Iterable[str],
        options: EnqueueOptions | None = None,
    ) -> JobResult:
        """Queue a batch of commands for a target and wait for its results.

        :param target_id: Target to run the commands on
        :param commands: Commands to send, in order
        :param options: Stop-on-fail and delay options
        :return: The ordered per-command results
        :raises ConnectFailedError: If the target could not be reached
        :raises TargetNotFoundError: If the target has no configuration
        :raises DispatcherClosedError: If the dispatcher is shutting down
        """
        job = self.submit(target_id, commands, options)
        return await job.get_job_result()

    async def enqueue_bulk(
        self,
        target_ids: Iterable[str],
        commands: Iterable[str],
        options: EnqueueOptions | None = None,
    ) -> list[BulkResult]:
        """Run the same batch on many targets concurrently.

        Never raises because one target failed; that target's entry carries
        the error instead.

        :param target_ids: Targets to run the commands on
        :param commands: Commands to send, in order, on every target
        :param options: Stop-on-fail and delay options
        :return: One entry per target id, tagged with that id
        """
        commands = list(commands)

        async def run_one(target_id: str) -> BulkResult:
            try:
                job_result = await self.enqueue_commands(target_id, commands, options)
            except Exception as e:
                LOGGER.warning("Bulk dispatch to %s failed: %s", target_id, e)
                return BulkResult.from_error(target_id, e)
            return BulkResult.from_job_result(target_id, job_result)

        return list(
            await asyncio.gather(*[run_one(target_id) for target_id in target_ids]),
        )

    async def shutdown(self) -> None:
        """Shut the dispatcher down.

        Follows the configured shutdown phases:
        1. Stop accepting new jobs
        2. Wait for active drains to finish (grace period)
        3. Cancel remaining drains, failing their jobs
        4. Wait for cancelled drains to close their sessions
        """
        LOGGER.info("Shutting down dispatcher")
        self._shutting_down = True

        tasks = [
            queue.drain_task
            for queue in self.registry.queues()
            if queue.drain_task is not None
        ]

        if tasks and self.config.grace_period != DispatcherConfig.DISABLE:
            _, pending = await asyncio.wait(tasks, timeout=self.config.grace_period)
            if pending:
                LOGGER.warning(
                    "Grace period expired with %d queues still draining",
                    len(pending),
                )
            tasks = list(pending)

        for task in tasks:
            task.cancel()

        if tasks and self.config.await_shutdown_period != DispatcherConfig.DISABLE:
            _, pending = await asyncio.wait(
                tasks,
                timeout=self.config.await_shutdown_period,
            )
            if pending:
                LOGGER.warning(
                    "%d queues did not stop within the shutdown period",
                    len(pending),
                )

        LOGGER.info("Dispatcher shutdown complete")
