from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from familymed.models import DoseLogEntry, DoseStatus

LogKey = Tuple[str, str, int, int]


def date_key(day: date) -> str:
    """Calendar day as a log key, e.g. '2024-03-01'."""
    if isinstance(day, datetime):
        day = day.date()
    return day.isoformat()


class DoseLog:
    """Per-occurrence status overrides keyed by (date_key, assignment_id, hour, minute)."""

    def __init__(self, entries: Iterable[DoseLogEntry] = ()):
        self._entries: Dict[LogKey, DoseLogEntry] = {}
        for e in entries:
            # duplicate entries: last one wins
            self._entries[e.key] = e

    def __len__(self):
        return len(self._entries)

    def get(self, key_date: str, assignment_id: str, hour: int, minute: int) -> Optional[DoseLogEntry]:
        return self._entries.get((key_date, assignment_id, hour, minute))

    def entries(self) -> List[DoseLogEntry]:
        return list(self._entries.values())

    def upsert(self, key_date: str, assignment_id: str, hour: int, minute: int,
               status: DoseStatus, snooze_until: Optional[datetime] = None) -> DoseLogEntry:
        entry = self.get(key_date, assignment_id, hour, minute)
        if entry is None:
            entry = DoseLogEntry(key_date, assignment_id, hour, minute, status, snooze_until)
            self._entries[entry.key] = entry
        else:
            entry.status = status
            entry.snooze_until = snooze_until
        return entry

    def remove_for_assignment(self, assignment_id: str) -> int:
        stale = [k for k, e in self._entries.items() if e.assignment_id == assignment_id]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def prune(self, valid_assignment_ids) -> int:
        """Drop entries whose assignment no longer exists."""
        valid = set(valid_assignment_ids)
        stale = [k for k, e in self._entries.items() if e.assignment_id not in valid]
        for k in stale:
            del self._entries[k]
        return len(stale)
