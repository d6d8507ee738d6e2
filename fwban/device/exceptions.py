# ./fwban/device/exceptions.py
"""
Custom exceptions for the banlist engine.

Configuration problems are fatal at startup, connection failures are fatal
for the affected device, and remote errors are handed back to the caller.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class FwbanError(Exception):
    """Base exception for banlist errors."""


class ConfigError(FwbanError):
    """Raised when the settings or a configured prefix are invalid."""


class ConfigConflict(ConfigError):
    """Raised when a prefix is both on the whitelist and on the blacklist."""

    def __init__(self, device: str, prefix: str):
        self.device = device
        self.prefix = prefix
        super().__init__(f"{device}: Conflicting whitelist/blacklist entry {prefix}")


class ConnectionFailure(FwbanError):
    """Raised when a device cannot be reached, refuses the login or misses a deadline."""


class RemoteError(FwbanError):
    """Raised when the device rejects a request."""

    def __init__(self, message: str, status: Optional[int] = None, detail: str = ""):
        self.status = status
        self.detail = detail
        super().__init__(message)
        logger.debug("Remote error status=%s detail=%s", status, detail)


class DuplicateEntry(RemoteError):
    """Raised when the device already has the address on the list."""


class EntryNotFound(RemoteError):
    """Raised when the row identifier no longer exists on the device."""


class MissingField(RemoteError):
    """Raised when a device reply lacks a field we depend on."""

    def __init__(self, field: str, context: str = ""):
        self.field = field
        message = f"missing `{field}`"
        if context:
            message = f"{context}: {message}"
        super().__init__(message, detail=field)
