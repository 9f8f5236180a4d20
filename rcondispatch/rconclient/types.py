"""Data classes used in the RCON client module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class RCONPacketType(IntEnum):
    """Types for an RCON TCP packet.

    Defined in the `Source RCON Protocol documentation
    <https://developer.valvesoftware.com/wiki/Source_RCON_Protocol>`_ and shared
    by the Minecraft implementation.

    :cvar MULTI_PACKET: Response value; an empty one marks the end of a response
    :cvar COMMAND_PACKET: Command packet, also the type of the auth response
    :cvar AUTH_PACKET: Authentication packet
    """

    MULTI_PACKET = 0
    COMMAND_PACKET = 2
    AUTH_PACKET = 3


class SessionState(Enum):
    """Lifecycle of a transport session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class TargetConfig:
    """Connection details for one remote console.

    :param target_id: Stable identifier of the target
    :param host: Hostname or address of the game server
    :param port: RCON port
    :param password: RCON password used for the auth handshake
    """

    target_id: str
    host: str
    port: int
    password: str = field(repr=False)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single command.

    ``output`` is set iff ``ok``; ``error`` is set iff not ``ok``.
    """

    ok: bool
    output: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, output: str) -> CommandResult:
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls, error: str) -> CommandResult:
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class JobResult:
    """Ordered results for one job.

    May hold fewer results than commands submitted when stop-on-fail
    truncated the job at its first failure.
    """

    results: list[CommandResult] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(not result.ok for result in self.results)


@dataclass(frozen=True)
class BulkResult:
    """Entry of a bulk dispatch, tagged with the target it belongs to.

    Either ``results`` and ``failed`` are set (the job ran) or ``error`` is
    set (the target could not be reached at all).
    """

    server_id: str
    results: list[CommandResult] | None = None
    failed: bool | None = None
    error: str | None = None

    @classmethod
    def from_job_result(cls, server_id: str, job_result: JobResult) -> BulkResult:
        return cls(
            server_id=server_id,
            results=job_result.results,
            failed=job_result.failed,
        )

    @classmethod
    def from_error(cls, server_id: str, error: BaseException) -> BulkResult:
        return cls(server_id=server_id, error=str(error))
