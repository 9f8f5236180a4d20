"""Jobs submitted to a per-target command queue."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import ClassVar

from rcondispatch.rconclient import JobResult


@dataclass(frozen=True)
class EnqueueOptions:
    """Caller options for one batch of commands.

    Unset values fall back to the defaults: stop on the first failure and
    wait 200 ms between commands. An explicit ``delay_ms=0`` disables the
    delay.

    :param stop_on_fail: Skip the remaining commands after the first failure
    :param delay_ms: Milliseconds to wait between consecutive commands
    """

    DEFAULT_STOP_ON_FAIL: ClassVar[bool] = True
    DEFAULT_DELAY_MS: ClassVar[int] = 200

    stop_on_fail: bool | None = None
    delay_ms: int | None = None

    def __post_init__(self) -> None:
        if self.delay_ms is not None and self.delay_ms < 0:
            msg = "delay_ms must not be negative"
            raise ValueError(msg)


@dataclass
class Job:
    """One batch of commands for a single target.

    The job owns a future that is fulfilled exactly once, either with a
    :class:`JobResult` or with the error that prevented the job from running.

    :param commands: Commands to send, in order
    :param stop_on_fail: Whether to stop at the first failed command
    :param delay: Seconds to wait between consecutive commands
    :param result: Future fulfilled when the job completes
    """

    commands: list[str]
    stop_on_fail: bool
    delay: float
    result: asyncio.Future[JobResult] = field(repr=False)

    @classmethod
    def create(
        cls,
        commands: list[str],
        options: EnqueueOptions | None = None,
        default_delay_ms: int = EnqueueOptions.DEFAULT_DELAY_MS,
    ) -> Job:
        """Create a job bound to the running event loop.

        :param commands: Commands to send, in order
        :param options: Caller options, None for all defaults
        :param default_delay_ms: Delay used when the caller leaves it unset
        :return: The created job
        """
        options = options or EnqueueOptions()
        stop_on_fail = (
            EnqueueOptions.DEFAULT_STOP_ON_FAIL
            if options.stop_on_fail is None
            else options.stop_on_fail
        )
        delay_ms = default_delay_ms if options.delay_ms is None else options.delay_ms
        return cls(
            commands=list(commands),
            stop_on_fail=stop_on_fail,
            delay=delay_ms / 1000,
            result=asyncio.get_running_loop().create_future(),
        )

    @property
    def done(self) -> bool:
        return self.result.done()

    def set_job_result(self, result: JobResult) -> None:
        """Fulfil the job with its result unless already fulfilled or abandoned."""
        if not self.result.done():
            self.result.set_result(result)

    def set_job_error(self, error: BaseException) -> None:
        """Reject the job unless already fulfilled or abandoned."""
        if not self.result.done():
            self.result.set_exception(error)

    async def get_job_result(self) -> JobResult:
        """Await the job outcome.

        :raises ConnectFailedError: if the target could not be reached
        :raises TargetNotFoundError: if the target has no configuration
        :raises DispatcherShutdownError: if the dispatcher shut down first
        """
        return await self.result
