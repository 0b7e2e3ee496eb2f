"""Custom exceptions for the Voxbridge call orchestrator."""


class VoxbridgeError(Exception):
    """Base exception for all Voxbridge errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(VoxbridgeError):
    """Required configuration is missing or invalid.

    Raised when a command cannot be built because a setting such as
    the human agent number has not been supplied.
    """

    pass


class ProtocolError(VoxbridgeError):
    """Inbound message could not be understood.

    Raised when a jambonz message is not valid JSON, has no type,
    or names a hook path nobody registered.
    """

    pass


class TelephonyError(VoxbridgeError):
    """Telephony/WebSocket error.

    Raised when commands are sent on a socket that is already closed
    or the transport fails mid-send.
    """

    pass
