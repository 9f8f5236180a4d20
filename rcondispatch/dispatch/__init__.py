"""Per-target command queues and the dispatcher that routes batches to them."""

from .dispatcher import Dispatcher, DispatcherConfig, QueueRegistry
from .job import EnqueueOptions, Job
from .queue import TargetQueue

__all__ = [
    "Dispatcher",
    "DispatcherConfig",
    "EnqueueOptions",
    "Job",
    "QueueRegistry",
    "TargetQueue",
]
