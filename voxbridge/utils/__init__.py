"""Utility modules."""

from voxbridge.utils.exceptions import (
    ConfigurationError,
    ProtocolError,
    TelephonyError,
    VoxbridgeError,
)
from voxbridge.utils.logging import get_logger, setup_logging

__all__ = [
    "VoxbridgeError",
    "ConfigurationError",
    "ProtocolError",
    "TelephonyError",
    "setup_logging",
    "get_logger",
]
