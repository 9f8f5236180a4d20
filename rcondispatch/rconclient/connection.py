"""RCON communication client.

Intended for use within a per-target drain loop for delivering commands
and receiving results asynchronously. The philosophy is to bubble up
socket exceptions to the owning session, which turns them into failed
command results and drops the connection. Because we consider connections
that live for one drain cycle, we don't support the async context manager
pattern here, but instead in the wrapping resource RCONSession.

Packet format reference: https://developer.valvesoftware.com/wiki/Source_RCON_Protocol
"""

from __future__ import annotations

import asyncio
import logging
import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .rcon_exceptions import (
    ConnectError,
    RCONClientIncorrectPasswordError,
    RCONClientNotAuthenticatedError,
    RCONClientTimeoutError,
    RCONProtocolError,
)
from .types import RCONPacketType

if TYPE_CHECKING:
    from .types import TargetConfig

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_COMMAND_TIMEOUT = 5


@dataclass
class SocketClientConfig:
    """Configuration for the RCON SocketClient.

    :param host: The RCON host
    :param port: The RCON port
    :param password: The RCON password
    :param connect_timeout: Seconds allowed for connecting and authenticating
    :param command_timeout: Seconds allowed for a full command response,
        None for no timeout
    """

    host: str
    port: int
    password: str = field(repr=False)
    connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT
    command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT

    @classmethod
    def from_target(
        cls,
        target: TargetConfig,
        connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
    ) -> SocketClientConfig:
        """Build a client configuration for a target.

        :param target: The target to connect to
        :param connect_timeout: Seconds allowed for connecting and authenticating
        :param command_timeout: Seconds allowed for a full command response
        :return: The socket client configuration
        """
        return cls(
            host=target.host,
            port=target.port,
            password=target.password,
            connect_timeout=connect_timeout,
            command_timeout=command_timeout,
        )


class SocketClient:
    """Client that manages an RCON connection to a server.

    Supports single-threaded && single-coroutine access only.
    """

    # request id (4) + packet type (4) + 2 null bytes (2)
    _PACKET_METADATA_SIZE = 10
    _MAX_PACKET_LENGTH = 1 << 20
    _MAX_REQUEST_ID = 2**31 - 1
    _AUTH_REQUEST_ID = 0

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: SocketClientConfig,
    ) -> None:
        """Initialize the SocketClient with packet ID starting at 1.

        :param reader: The StreamReader for the socket
        :param writer: The StreamWriter for the socket
        :param config: The SocketClientConfig instance
        """
        self._reader = reader
        self._writer = writer
        self._request_id: int = 1
        self._command_timeout = config.command_timeout

    @property
    def connected(self) -> bool:
        return self._request_id != -1

    @staticmethod
    def _format_packet(
        payload: str,
        packet_type: RCONPacketType,
        request_id: int,
    ) -> bytes:
        """Format a packet to be sent to the RCON server.

        :param payload: The body of the packet
        :param packet_type: The type of the packet (RCONPacketType)
        :param request_id: The request ID for the packet
        :return: The formatted packet as bytes
        """
        body_bytes = payload.encode("utf-8")

        return (
            struct.pack("<i", len(body_bytes) + SocketClient._PACKET_METADATA_SIZE)
            + struct.pack("<i", request_id)
            + struct.pack("<i", packet_type.value)
            + body_bytes
            + b"\x00\x00"
        )

    @staticmethod
    async def _read_packet(reader: asyncio.StreamReader) -> tuple[int, int, str]:
        """Read one full packet from the RCON server.

        :param reader: The StreamReader for the RCON socket
        :return: A tuple of (response_id, response_type, response_body)

        :raises RCONProtocolError: if the frame is malformed
        :raises asyncio.IncompleteReadError: if the stream ends mid-frame
        :raises ConnectionError: if the socket is no longer connected
        """
        # get the length
        response_bytes = await reader.readexactly(4)
        response_length: int = struct.unpack("<i", response_bytes)[0]
        if not (
            SocketClient._PACKET_METADATA_SIZE
            <= response_length
            <= SocketClient._MAX_PACKET_LENGTH
        ):
            msg = f"Invalid packet length {response_length}"
            raise RCONProtocolError(msg)

        # rest of response
        response_bytes = await reader.readexactly(response_length)
        if response_bytes[-1:] != b"\x00":
            msg = "Packet body is not null terminated"
            raise RCONProtocolError(msg)

        response_id, response_type = struct.unpack("<ii", response_bytes[0:8])
        response_body = response_bytes[8:-2].decode("utf-8", errors="replace")

        return response_id, response_type, response_body

    @staticmethod
    async def _authenticate(
        password: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Send the auth packet and wait for the server's verdict.

        Source servers send an empty response value packet ahead of the
        auth response, so those are skipped.

        :param password: The RCON password
        :param reader: The StreamReader for the RCON socket
        :param writer: The StreamWriter for the RCON socket

        :raises RCONClientIncorrectPasswordError: if the password is rejected
        :raises ConnectionError: if the socket is no longer connected
        """
        writer.write(
            SocketClient._format_packet(
                password,
                RCONPacketType.AUTH_PACKET,
                SocketClient._AUTH_REQUEST_ID,
            ),
        )
        await writer.drain()

        while True:
            response_id, response_type, _ = await SocketClient._read_packet(reader)

            if response_type == RCONPacketType.MULTI_PACKET:
                continue

            if response_id == -1:
                msg = "Incorrect RCON password"
                raise RCONClientIncorrectPasswordError(msg)

            return

    @staticmethod
    async def _close_stream(writer: asyncio.StreamWriter | None) -> None:
        """Close a stream, logging and ignoring any error."""
        if writer is None:
            return
        try:
            writer.close()
            await writer.wait_closed()
        except Exception:
            LOGGER.exception("Error while closing RCON socket")

    def _next_request_id(self) -> int:
        self._request_id += 1
        if self._request_id > SocketClient._MAX_REQUEST_ID:
            self._request_id = 1
        return self._request_id

    async def send_command(self, command: str) -> str:
        """Send a command to the RCON server and return the response.

        Handles multi-packet responses by following the command with an empty
        response value packet and collecting every packet echoing the command
        id until the server echoes the marker back.

        :param command: The RCON command to send
        :return: The response from the RCON server

        :raises RCONClientTimeoutError: if the full response takes too long
        :raises RCONClientNotAuthenticatedError: if the server drops the auth
        :raises RCONProtocolError: if the server sends a malformed frame
        :raises ConnectionError: if the socket is no longer connected
        """
        if not self.connected:
            msg = "Client disconnected"
            raise ConnectionError(msg)

        command_id = self._next_request_id()
        marker_id = self._next_request_id()

        response_parts: list[str] = []
        try:
            async with asyncio.timeout(self._command_timeout):
                self._writer.write(
                    SocketClient._format_packet(
                        command,
                        RCONPacketType.COMMAND_PACKET,
                        command_id,
                    ),
                )
                self._writer.write(
                    SocketClient._format_packet(
                        "",
                        RCONPacketType.MULTI_PACKET,
                        marker_id,
                    ),
                )
                await self._writer.drain()

                while True:
                    response_id, _, response_body = await SocketClient._read_packet(
                        self._reader,
                    )

                    if response_id == -1:
                        msg = "RCON server reports the connection is not authenticated"
                        raise RCONClientNotAuthenticatedError(msg)

                    if response_id == marker_id:
                        break

                    # stale marker echoes from earlier commands are skipped
                    if response_id == command_id:
                        response_parts.append(response_body)
        except TimeoutError as e:
            msg = f"No response within {self._command_timeout}s"
            raise RCONClientTimeoutError(msg) from e

        return "".join(response_parts)

    async def disconnect(self) -> None:
        """Disconnect from the RCON server and close the socket (best effort)."""
        await SocketClient._close_stream(self._writer)
        self._request_id = -1

    @classmethod
    async def get_new_client(
        cls,
        config: SocketClientConfig,
    ) -> SocketClient:
        """Connect to the RCON server and get a new authenticated client.

        Opening the socket and the auth handshake share a single deadline of
        ``config.connect_timeout`` seconds.

        :param config: The SocketClientConfig instance
        :return: A SocketClient if auth is successful

        :raises RCONClientIncorrectPasswordError: if the password is incorrect
        :raises ConnectError: if the socket cannot be opened, the handshake
            times out, or the connection drops during the handshake
        """
        address = f"{config.host}:{config.port}"
        writer: asyncio.StreamWriter | None = None

        try:
            async with asyncio.timeout(config.connect_timeout):
                reader, writer = await asyncio.open_connection(
                    config.host,
                    config.port,
                )
                await SocketClient._authenticate(config.password, reader, writer)
        except RCONClientIncorrectPasswordError:
            await SocketClient._close_stream(writer)
            raise
        except TimeoutError as e:
            await SocketClient._close_stream(writer)
            msg = f"Timed out connecting to {address}"
            raise ConnectError(msg) from e
        except (OSError, EOFError) as e:
            await SocketClient._close_stream(writer)
            msg = f"Could not connect to {address}: {e}"
            raise ConnectError(msg) from e

        LOGGER.debug("Authenticated with RCON server at %s", address)
        return cls(reader, writer, config)
