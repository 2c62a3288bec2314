"""
Device-side exception hierarchy.

These never cross the wire; backend failures arrive here wrapped in
BackendCommunicationError.
"""

from __future__ import annotations

from typing import Optional


class DeviceError(Exception):
    """Base exception for on-device failures."""

    code = "device_error"


class InvalidPinFormatError(DeviceError):
    """Entered or configured PIN is not exactly 4 digits."""

    code = "invalid_pin_format"


class PinConfigurationError(DeviceError):
    """Rejected PIN configuration (e.g. duress PIN equal to normal PIN)."""

    code = "pin_configuration"


class LocationUnavailableError(DeviceError):
    """The platform could not produce a position fix."""

    code = "location_unavailable"


class LocationPermissionError(DeviceError):
    """Foreground or background location permission was refused."""

    code = "permission_denied"

    def __init__(self, scope: str):
        super().__init__(f"{scope.capitalize()} location permission denied.")
        self.scope = scope


class BackendCommunicationError(DeviceError):
    """The alert backend was unreachable or answered with an error."""

    code = "backend_communication_failed"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
