"""Transport session bound to a single RCON target.

A session owns at most one authenticated SocketClient. It connects lazily,
reconnects lazily after the connection breaks, and never lets a transport
fault escape a single command: :meth:`RCONSession.send` always returns a
:class:`CommandResult`.

State machine::

    DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED
         ^                          |                  |
         +-------- failure ---------+   disconnect() / transport error
         +---------------------------------------------+
"""

from __future__ import annotations

import asyncio
import logging

from .connection import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    SocketClient,
    SocketClientConfig,
)
from .rcon_exceptions import ConnectError
from .types import CommandResult, SessionState, TargetConfig

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


def describe_error(error: BaseException) -> str:
    """Render an exception for a command result or an API payload."""
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class RCONSession:
    """Timeout-bounded request/response exchange with one remote console.

    Supports single-coroutine command delivery; concurrent :meth:`connect`
    calls share one in-flight handshake.
    """

    def __init__(
        self,
        target: TargetConfig,
        connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        """Initialize a disconnected session.

        :param target: The target this session talks to
        :param connect_timeout: Seconds allowed for connect and handshake
        :param command_timeout: Seconds allowed for one command response
        """
        self.target = target
        self._client_config = SocketClientConfig.from_target(
            target,
            connect_timeout=connect_timeout,
            command_timeout=command_timeout,
        )
        self._client: SocketClient | None = None
        self._connect_lock = asyncio.Lock()
        self.state = SessionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    async def connect(self) -> None:
        """Open and authenticate the connection if not already connected.

        :raises ConnectError: if the socket cannot be opened, the handshake
            times out, or the password is rejected
        """
        if self.connected:
            return

        async with self._connect_lock:
            # another caller may have finished the handshake while we waited
            if self.connected:
                return

            self.state = SessionState.CONNECTING
            LOGGER.debug(
                "Connecting to %s at %s:%d",
                self.target.target_id,
                self.target.host,
                self.target.port,
            )
            try:
                self._client = await SocketClient.get_new_client(self._client_config)
            except (ConnectError, asyncio.CancelledError):
                self.state = SessionState.DISCONNECTED
                raise
            except Exception as e:
                self.state = SessionState.DISCONNECTED
                msg = f"Could not connect to {self.target.target_id}: {e}"
                raise ConnectError(msg) from e

            self.state = SessionState.CONNECTED
            LOGGER.info("Connected to RCON target %s", self.target.target_id)

    async def send(self, command: str) -> CommandResult:
        """Send one command and capture its outcome.

        Connects first if needed. Connect, transport, protocol, and encoding errors
        are returned as a failed result; a broken connection is dropped so the
        next command reconnects.

        :param command: The console command to run
        :return: The command result
        """
        LOGGER.debug("Sending to %s: %s", self.target.target_id, command)
        try:
            await self.connect()
        except ConnectError as e:
            LOGGER.warning(
                "Command %r for %s failed to connect: %s",
                command,
                self.target.target_id,
                e,
            )
            return CommandResult.failure(describe_error(e))

        try:
            output = await self._client.send_command(command)
        except (OSError, EOFError) as e:
            LOGGER.warning(
                "Command %r for %s failed: %s",
                command,
                self.target.target_id,
                describe_error(e),
            )
            await self.disconnect()
            return CommandResult.failure(describe_error(e))
        except ValueError as e:
            # the packet could not be built, so nothing reached the socket
            LOGGER.warning(
                "Command %r for %s could not be encoded: %s",
                command,
                self.target.target_id,
                describe_error(e),
            )
            return CommandResult.failure(describe_error(e))

        LOGGER.debug(
            "Response from %s received (%d chars)",
            self.target.target_id,
            len(output),
        )
        return CommandResult.success(output)

    async def disconnect(self) -> None:
        """Close the connection if one exists, ignoring close errors."""
        client, self._client = self._client, None
        self.state = SessionState.DISCONNECTED
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception:
            LOGGER.exception(
                "Error while disconnecting from %s",
                self.target.target_id,
            )
        LOGGER.debug("Disconnected from RCON target %s", self.target.target_id)
