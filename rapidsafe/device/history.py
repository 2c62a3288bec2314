"""
history.py — Local, append-only log of dispatched alerts (newest first).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence


@dataclass(frozen=True)
class HistoryEntry:
    type: str
    description: str
    recipients: List[str]
    status: str = "Sent"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "description": self.description,
            "recipients": list(self.recipients),
            "status": self.status,
        }


class HistoryLog:
    def __init__(self) -> None:
        self._entries: List[HistoryEntry] = []

    def append(
        self,
        type: str,
        description: str,
        recipients: Sequence[str],
        status: str = "Sent",
    ) -> HistoryEntry:
        entry = HistoryEntry(
            type=type,
            description=description or "No additional details provided.",
            recipients=list(recipients),
            status=status,
        )
        self._entries.insert(0, entry)
        return entry

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
