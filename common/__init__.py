from .config import settings, Settings, validate_minting_settings
from .errors import (
    MinterError,
    ConfigurationError,
    DeviceUnavailableError,
    AuthenticationError,
    MediaNotFoundError,
    NetworkMismatchError,
    ExternalServiceError,
)

__all__ = [
    "settings",
    "Settings",
    "validate_minting_settings",
    # Errors
    "MinterError",
    "ConfigurationError",
    "DeviceUnavailableError",
    "AuthenticationError",
    "MediaNotFoundError",
    "NetworkMismatchError",
    "ExternalServiceError",
]
