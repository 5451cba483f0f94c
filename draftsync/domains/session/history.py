from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from draftsync.core.config import settings
from draftsync.domains.drafts.entities import Draft, utcnow


@dataclass
class HistoryEntry:
    snapshot: Draft
    timestamp: datetime
    action: str


class UndoHistory:
    """Ограниченная история undo/redo, только в памяти"""

    def __init__(self, limit: int = settings.undo_history_limit):
        self.limit = limit
        self._entries: List[HistoryEntry] = []
        self._index = -1

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    @property
    def index(self) -> int:
        return self._index

    def reset(self, snapshot: Draft, action: str) -> None:
        self._entries = [HistoryEntry(snapshot.copy(), utcnow(), action)]
        self._index = 0

    def clear(self) -> None:
        self._entries = []
        self._index = -1

    def push(self, snapshot: Draft, action: str) -> None:
        # Новое действие отбрасывает ветку redo
        entries = self._entries[: self._index + 1]
        entries.append(HistoryEntry(snapshot.copy(), utcnow(), action))
        self._entries = entries[-self.limit:]
        self._index = len(self._entries) - 1

    def can_undo(self) -> bool:
        return self._index > 0

    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    def undo(self) -> Optional[Draft]:
        if not self.can_undo():
            return None
        self._index -= 1
        return self._entries[self._index].snapshot.copy()

    def redo(self) -> Optional[Draft]:
        if not self.can_redo():
            return None
        self._index += 1
        return self._entries[self._index].snapshot.copy()
