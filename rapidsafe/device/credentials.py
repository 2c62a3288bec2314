"""
credentials.py — Local security credentials (normal + duress PIN).

The store is the only writer of PINs. ``set_pins`` enforces the format
and the normal != duress invariant; readers (the PIN gate) never re-check
it. Credentials never leave the device.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from rapidsafe.device.errors import InvalidPinFormatError, PinConfigurationError

logger = logging.getLogger(__name__)

PIN_LENGTH = 4


@dataclass(frozen=True)
class SecurityCredentials:
    normal_pin: Optional[str] = None
    duress_pin: Optional[str] = None
    is_pin_set: bool = False


def validate_pin_format(pin: str) -> None:
    """Raise InvalidPinFormatError unless ``pin`` is exactly 4 ASCII digits."""
    if not isinstance(pin, str) or len(pin) != PIN_LENGTH or not (pin.isascii() and pin.isdigit()):
        raise InvalidPinFormatError(f"PIN must be {PIN_LENGTH} digits.")


class CredentialStore(Protocol):
    def get_credentials(self) -> SecurityCredentials:
        ...

    def set_pins(self, normal: str, duress: str) -> bool:
        ...


class InMemoryCredentialStore:
    """Process-local credential store."""

    def __init__(self, credentials: Optional[SecurityCredentials] = None):
        self._credentials = credentials or SecurityCredentials()

    def get_credentials(self) -> SecurityCredentials:
        return self._credentials

    def set_pins(self, normal: str, duress: str) -> bool:
        validate_pin_format(normal)
        validate_pin_format(duress)
        if normal == duress:
            raise PinConfigurationError("Normal and Duress PINs cannot be the same.")

        self._credentials = SecurityCredentials(
            normal_pin=normal,
            duress_pin=duress,
            is_pin_set=True,
        )
        logger.info("Security PINs updated")
        return True
