"""Provides async RCON transport functionality for the dispatch core."""

from .connection import SocketClient, SocketClientConfig
from .rcon_exceptions import (
    ConnectError,
    ConnectFailedError,
    DispatcherClosedError,
    DispatcherShutdownError,
    RCONClientIncorrectPasswordError,
    RCONClientNotAuthenticatedError,
    RCONClientTimeoutError,
    RCONDispatchError,
    RCONProtocolError,
    TargetNotFoundError,
)
from .session import RCONSession, describe_error
from .types import (
    BulkResult,
    CommandResult,
    JobResult,
    RCONPacketType,
    SessionState,
    TargetConfig,
)

__all__ = [
    "BulkResult",
    "CommandResult",
    "ConnectError",
    "ConnectFailedError",
    "DispatcherClosedError",
    "DispatcherShutdownError",
    "JobResult",
    "RCONClientIncorrectPasswordError",
    "RCONClientNotAuthenticatedError",
    "RCONClientTimeoutError",
    "RCONDispatchError",
    "RCONPacketType",
    "RCONProtocolError",
    "RCONSession",
    "SessionState",
    "SocketClient",
    "SocketClientConfig",
    "TargetConfig",
    "TargetNotFoundError",
    "describe_error",
]
