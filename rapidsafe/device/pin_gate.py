"""
pin_gate.py — Classify an entered code as NORMAL, DURESS or INVALID.

Pure function, no I/O. Both stored PINs are compared on every call with
``hmac.compare_digest`` so the duress and normal paths do the same work;
the duress result takes precedence over the normal one.
"""

from __future__ import annotations

import hmac
from enum import Enum
from typing import Optional

from rapidsafe.device.credentials import SecurityCredentials, validate_pin_format


class PinOutcome(str, Enum):
    NORMAL  = "normal"
    DURESS  = "duress"
    INVALID = "invalid"


def _matches(entered: bytes, stored: Optional[str]) -> bool:
    return hmac.compare_digest(entered, (stored or "").encode("ascii"))


def evaluate(entered_code: str, credentials: SecurityCredentials) -> PinOutcome:
    """
    Classify ``entered_code`` against the stored PINs.

    Raises
    ------
    InvalidPinFormatError
        ``entered_code`` is not exactly 4 digits. Nothing is compared.
    """
    validate_pin_format(entered_code)
    entered = entered_code.encode("ascii")

    is_duress = _matches(entered, credentials.duress_pin)
    is_normal = _matches(entered, credentials.normal_pin)

    if not credentials.is_pin_set:
        return PinOutcome.INVALID
    if is_duress:
        return PinOutcome.DURESS
    if is_normal:
        return PinOutcome.NORMAL
    return PinOutcome.INVALID
