"""
unlock.py — Lock-screen controller.

Owns the 4-digit input buffer and turns a submitted code into a screen
decision:

    NORMAL   → protected_home
    DURESS   → decoy, silent alert dispatched in the background
    INVALID  → stay on pin_check, "Access Denied"

The duress dispatch is scheduled as a task rather than awaited, so the
screen answers a duress code as quickly as a wrong one and the message
shown never depends on whether the alert got through.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set

from rapidsafe.alerts.models import EmergencyContact, TriggerMethod
from rapidsafe.device.credentials import PIN_LENGTH, CredentialStore
from rapidsafe.device.dispatch import AlertDispatchClient, AlertResult
from rapidsafe.device.errors import InvalidPinFormatError
from rapidsafe.device.pin_gate import PinOutcome, evaluate

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Access Denied"


class UnlockRoute(str, Enum):
    PIN_CHECK      = "pin_check"
    PROTECTED_HOME = "protected_home"
    DECOY          = "decoy"


@dataclass(frozen=True)
class UnlockResponse:
    route: UnlockRoute
    message: Optional[str] = None


class UnlockController:
    def __init__(
        self,
        credential_store: CredentialStore,
        dispatcher: AlertDispatchClient,
        user_id: str,
        contacts_provider: Callable[[], Sequence[EmergencyContact]],
    ):
        self._credentials = credential_store
        self._dispatcher = dispatcher
        self.user_id = user_id
        self._contacts_provider = contacts_provider
        self._buffer: List[str] = []
        # Strong references until each dispatch finishes
        self._dispatch_tasks: Set[asyncio.Task] = set()
        self._latest_dispatch: Optional[asyncio.Task] = None

    @property
    def dispatches_in_flight(self) -> int:
        return len(self._dispatch_tasks)

    @property
    def buffer(self) -> str:
        return "".join(self._buffer)

    def enter_digit(self, digit: str) -> str:
        if len(digit) != 1 or not digit.isdigit():
            raise InvalidPinFormatError("Only digits can be entered.")
        if len(self._buffer) < PIN_LENGTH:
            self._buffer.append(digit)
        return self.buffer

    def delete(self) -> str:
        if self._buffer:
            self._buffer.pop()
        return self.buffer

    async def submit(self, code: Optional[str] = None) -> UnlockResponse:
        """
        Evaluate ``code`` (or the typed buffer when omitted).

        The buffer is cleared on every call, whatever the outcome.
        """
        entered = self.buffer if code is None else code
        self._buffer.clear()

        try:
            outcome = evaluate(entered, self._credentials.get_credentials())
        except InvalidPinFormatError as exc:
            return UnlockResponse(UnlockRoute.PIN_CHECK, str(exc))

        if outcome == PinOutcome.NORMAL:
            return UnlockResponse(UnlockRoute.PROTECTED_HOME)
        if outcome == PinOutcome.DURESS:
            task = asyncio.create_task(self._dispatch_duress(), name="rapidsafe-duress-dispatch")
            self._dispatch_tasks.add(task)
            task.add_done_callback(self._on_dispatch_done)
            self._latest_dispatch = task
            return UnlockResponse(UnlockRoute.DECOY, ACCESS_DENIED)
        return UnlockResponse(UnlockRoute.PIN_CHECK, ACCESS_DENIED)

    async def _dispatch_duress(self) -> AlertResult:
        contacts = list(self._contacts_provider())
        result = await self._dispatcher.initiate_sos(
            self.user_id, TriggerMethod.DURESS_PIN.value, contacts,
        )
        if not result.success:
            logger.error("Background alert dispatch failed: %s", result.message)
        return result

    def _on_dispatch_done(self, task: asyncio.Task) -> None:
        self._dispatch_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background alert dispatch crashed: %s", exc, exc_info=exc)

    async def wait_for_dispatch(self) -> Optional[AlertResult]:
        """
        Await the most recent background dispatch, if any.

        An exception raised by the dispatch is re-raised here; it has
        already been logged when the task finished.
        """
        task, self._latest_dispatch = self._latest_dispatch, None
        if task is None:
            return None
        return await task
