"""
Error taxonomy for the minter.

Every failure raised inside a trigger pipeline derives from MinterError so the
manager can isolate it per trigger. Running out of supply is not an error and
is reported through minting.orchestrator.SupplyExhausted instead.
"""

from typing import Optional


class MinterError(Exception):
    """Base class for all minter errors."""


class ConfigurationError(MinterError):
    """Missing or invalid configuration. Fatal at startup."""


class DeviceUnavailableError(MinterError):
    """The input device behind a trigger could not be opened."""


class AuthenticationError(MinterError):
    """A webhook call did not carry the expected secret."""


class MediaNotFoundError(MinterError):
    """The media file referenced by a trigger does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Media file not found: {path}")
        self.path = path


class NetworkMismatchError(MinterError):
    """The connected cluster is not the one the operator declared."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"Network mismatch: configured {expected} but connected to {actual}")
        self.expected = expected
        self.actual = actual


class ExternalServiceError(MinterError):
    """An upload or mint call to the minting backend failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
