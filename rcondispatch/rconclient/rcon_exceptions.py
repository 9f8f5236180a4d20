"""Custom exceptions for the RCON client and dispatch modules."""


class RCONDispatchError(Exception):
    """Base class for errors raised by the RCON dispatch core."""


class ConnectError(RCONDispatchError):
    """Raised when a session cannot open, authenticate, or finish its handshake."""


class RCONClientIncorrectPasswordError(ConnectError):
    """Raised when the RCON server rejects the password."""


class ConnectFailedError(RCONDispatchError):
    """Raised into every queued job when its drain cycle cannot connect."""


class TargetNotFoundError(RCONDispatchError):
    """Raised when a target id has no resolvable configuration."""

    def __init__(self, target_id: str) -> None:
        super().__init__(f"Server {target_id} not found")
        self.target_id = target_id


class DispatcherShutdownError(RCONDispatchError):
    """Raised into jobs abandoned because the dispatcher shut down."""


class DispatcherClosedError(DispatcherShutdownError, RuntimeError):
    """Raised when work is submitted to a dispatcher that is shutting down."""


class RCONClientTimeoutError(TimeoutError):
    """Raised when the server does not answer within the command timeout."""


class RCONProtocolError(ConnectionError):
    """Raised when the server sends a frame that cannot be decoded."""


class RCONClientNotAuthenticatedError(ConnectionError):
    """Raised when the server reports the connection is not authenticated."""
