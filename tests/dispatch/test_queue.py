"""Unit tests for the per-target command queue.

These tests drive :class:`TargetQueue` with scripted sessions so ordering,
stop-on-fail, pacing, and the connect/disconnect cycle can be checked
without sockets.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from rcondispatch.dispatch import EnqueueOptions, Job, TargetQueue
from rcondispatch.rconclient import (
    ConnectError,
    ConnectFailedError,
    DispatcherShutdownError,
    TargetNotFoundError,
)
from rcondispatch.targets import InMemoryTargetDirectory
from tests.fakes import FakeNetwork, make_target

NO_DELAY = EnqueueOptions(delay_ms=0)


def make_queue(
    target_id: str,
    directory: InMemoryTargetDirectory,
    network: FakeNetwork,
    on_purge: MagicMock | None = None,
) -> TargetQueue:
    return TargetQueue(
        target_id,
        directory.get_target_config,
        network.session_factory,
        on_purge=on_purge,
    )


@pytest.mark.asyncio
class TestTargetQueueDelivery:
    """Test suite for command ordering and stop-on-fail behavior."""

    async def test_runs_commands_in_order(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that every command runs and results keep submission order."""
        queue = make_queue("A", directory, network)
        job = Job.create(["one", "two", "three"], NO_DELAY)

        queue.enqueue(job)
        job_result = await job.get_job_result()

        assert [r.output for r in job_result.results] == ["ran one", "ran two", "ran three"]
        assert not job_result.failed
        assert network.commands_for("A") == ["one", "two", "three"]

    async def test_without_stop_on_fail_every_command_runs(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that a failure mid-job does not skip later commands."""
        network.failing_commands = {"bad"}
        queue = make_queue("A", directory, network)
        job = Job.create(
            ["one", "bad", "three"],
            EnqueueOptions(stop_on_fail=False, delay_ms=0),
        )

        queue.enqueue(job)
        job_result = await job.get_job_result()

        assert len(job_result.results) == 3
        assert [r.ok for r in job_result.results] == [True, False, True]
        assert job_result.failed

    async def test_stop_on_fail_truncates_after_first_failure(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that the job ends right after the first failed command."""
        network.failing_commands = {"bad"}
        queue = make_queue("A", directory, network)
        job = Job.create(["one", "bad", "three", "four"], NO_DELAY)

        queue.enqueue(job)
        job_result = await job.get_job_result()

        assert len(job_result.results) == 2
        assert job_result.results[1].error == "Unknown command: bad"
        assert network.commands_for("A") == ["one", "bad"]

    async def test_jobs_complete_in_fifo_order_without_overlap(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that jobs never interleave on one target."""
        network.send_delay = 0.005
        queue = make_queue("A", directory, network)
        jobs = [Job.create([f"j{i}-a", f"j{i}-b"], NO_DELAY) for i in range(4)]

        for job in jobs:
            queue.enqueue(job)
        await asyncio.gather(*(job.get_job_result() for job in jobs))

        assert network.overlaps == 0
        assert network.commands_for("A") == [
            command for i in range(4) for command in (f"j{i}-a", f"j{i}-b")
        ]

    async def test_rapid_enqueues_share_one_connection(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that jobs queued together reuse one connect and disconnect."""
        queue = make_queue("A", directory, network)
        jobs = [Job.create(["status"], NO_DELAY) for _ in range(3)]

        for job in jobs:
            queue.enqueue(job)
        await asyncio.gather(*(job.get_job_result() for job in jobs))

        assert network.connect_calls["A"] == 1
        assert network.disconnect_calls["A"] == 1

    async def test_empty_job_resolves_with_no_results(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that a job without commands still completes."""
        queue = make_queue("A", directory, network)
        job = Job.create([], NO_DELAY)

        queue.enqueue(job)
        job_result = await job.get_job_result()

        assert job_result.results == []
        assert not job_result.failed


@pytest.mark.asyncio
class TestTargetQueuePacing:
    """Test suite for the delay between consecutive commands."""

    async def test_delay_between_commands_not_after_last(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that three commands at 200 ms take at least 400 ms."""
        queue = make_queue("A", directory, network)
        job = Job.create(["one", "two", "three"], EnqueueOptions(delay_ms=200))
        loop = asyncio.get_running_loop()

        started = loop.time()
        queue.enqueue(job)
        await job.get_job_result()
        elapsed = loop.time() - started

        send_times = [sent_at for _, _, sent_at in network.sent]
        assert send_times[1] - send_times[0] >= 0.19
        assert send_times[2] - send_times[1] >= 0.19
        assert 0.39 <= elapsed < 0.6

    async def test_default_delay_applies_when_unset(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that leaving the delay unset waits 200 ms."""
        queue = make_queue("A", directory, network)
        job = Job.create(["one", "two"])

        queue.enqueue(job)
        await job.get_job_result()

        send_times = [sent_at for _, _, sent_at in network.sent]
        assert send_times[1] - send_times[0] >= 0.19


@pytest.mark.asyncio
class TestTargetQueueFailures:
    """Test suite for unknown targets and connect failures."""

    async def test_unknown_target_rejects_and_purges(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that a missing target fails every job without connecting."""
        on_purge = MagicMock()
        queue = make_queue("Z", directory, network, on_purge)
        jobs = [Job.create(["status"], NO_DELAY) for _ in range(2)]

        for job in jobs:
            queue.enqueue(job)

        for job in jobs:
            with pytest.raises(TargetNotFoundError, match="Server Z not found"):
                await job.get_job_result()
        await asyncio.sleep(0)

        assert network.connect_calls["Z"] == 0
        on_purge.assert_called_once_with(queue)
        assert not queue.processing

    async def test_connect_failure_rejects_every_pending_job(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that one failed connect rejects all queued jobs and purges."""
        network.failing_targets = {"A"}
        on_purge = MagicMock()
        queue = make_queue("A", directory, network, on_purge)
        jobs = [Job.create(["status"], NO_DELAY) for _ in range(3)]

        for job in jobs:
            queue.enqueue(job)

        for job in jobs:
            with pytest.raises(ConnectFailedError, match="RCON connect failed") as info:
                await job.get_job_result()
            assert isinstance(info.value.__cause__, ConnectError)

        assert network.connect_calls["A"] == 1
        assert network.sent == []
        on_purge.assert_called_once_with(queue)

    async def test_failure_on_one_target_leaves_sibling_untouched(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that queues for different targets are isolated."""
        network.failing_targets = {"B"}
        queue_a = make_queue("A", directory, network)
        queue_b = make_queue("B", directory, network)
        job_a = Job.create(["status"], NO_DELAY)
        job_b = Job.create(["status"], NO_DELAY)

        queue_a.enqueue(job_a)
        queue_b.enqueue(job_b)

        assert (await job_a.get_job_result()).results[0].ok
        with pytest.raises(ConnectFailedError):
            await job_b.get_job_result()


@pytest.mark.asyncio
class TestTargetQueueLifecycle:
    """Test suite for activation, re-activation, and cancellation."""

    async def test_reactivates_after_draining(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that a drained queue connects again for the next job."""
        queue = make_queue("A", directory, network)

        first = Job.create(["one"], NO_DELAY)
        queue.enqueue(first)
        await first.get_job_result()
        await asyncio.sleep(0)
        assert not queue.processing

        second = Job.create(["two"], NO_DELAY)
        queue.enqueue(second)
        await second.get_job_result()

        assert network.connect_calls["A"] == 2
        assert network.disconnect_calls["A"] == 2

    async def test_looks_up_fresh_config_on_each_activation(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that edits to a target between jobs are used."""
        queue = make_queue("A", directory, network)

        first = Job.create(["one"], NO_DELAY)
        queue.enqueue(first)
        await first.get_job_result()
        await asyncio.sleep(0)

        directory.add(make_target("A", host="10.0.0.9", port=27016))
        second = Job.create(["two"], NO_DELAY)
        queue.enqueue(second)
        await second.get_job_result()

        assert [s.target.host for s in network.sessions] == ["127.0.0.1", "10.0.0.9"]
        assert network.sessions[1].target.port == 27016

    async def test_job_added_during_drain_runs_in_same_activation(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that a job appended mid-drain is picked up without reconnecting."""
        network.send_delay = 0.01
        queue = make_queue("A", directory, network)
        first = Job.create(["one"], NO_DELAY)
        queue.enqueue(first)
        await asyncio.sleep(0.005)

        second = Job.create(["two"], NO_DELAY)
        queue.enqueue(second)
        await asyncio.gather(first.get_job_result(), second.get_job_result())

        assert network.connect_calls["A"] == 1

    async def test_cancel_fails_unfinished_jobs(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that cancelling the drain rejects in-flight and pending jobs."""
        network.send_delay = 1
        queue = make_queue("A", directory, network)
        running = Job.create(["slow"], NO_DELAY)
        waiting = Job.create(["next"], NO_DELAY)
        queue.enqueue(running)
        queue.enqueue(waiting)
        await asyncio.sleep(0.01)

        task = queue.drain_task
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        for job in (running, waiting):
            with pytest.raises(DispatcherShutdownError):
                await job.get_job_result()
        assert network.disconnect_calls["A"] == 1
        assert not queue.processing

    async def test_abandoned_job_still_runs(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that a job whose caller gave up still reaches the server."""
        queue = make_queue("A", directory, network)
        abandoned = Job.create(["one"], NO_DELAY)
        kept = Job.create(["two"], NO_DELAY)

        queue.enqueue(abandoned)
        queue.enqueue(kept)
        abandoned.result.cancel()
        await kept.get_job_result()

        assert network.commands_for("A") == ["one", "two"]

    async def test_unexpected_error_rejects_jobs_and_purges(
        self,
        directory: InMemoryTargetDirectory,
    ) -> None:
        """Test that a crash inside the drain fails every job with that error."""
        on_purge = MagicMock()
        session_factory = MagicMock(side_effect=RuntimeError("factory broke"))
        queue = TargetQueue(
            "A",
            directory.get_target_config,
            session_factory,
            on_purge=on_purge,
        )
        job = Job.create(["status"], NO_DELAY)

        queue.enqueue(job)

        with pytest.raises(RuntimeError, match="factory broke"):
            await job.get_job_result()
        await asyncio.sleep(0)
        on_purge.assert_called_once_with(queue)
        assert not queue.processing

    async def test_cancel_before_first_step_fails_jobs(
        self,
        directory: InMemoryTargetDirectory,
        network: FakeNetwork,
    ) -> None:
        """Test that a drain cancelled before it starts still rejects its jobs."""
        queue = make_queue("A", directory, network)
        job = Job.create(["status"], NO_DELAY)

        queue.enqueue(job)
        task = queue.drain_task
        task.cancel()
        await asyncio.wait([task])

        with pytest.raises(DispatcherShutdownError):
            await job.get_job_result()
        assert not queue.processing
        assert queue.pending_count == 0
        assert network.connect_calls["A"] == 0
