"""Storage interfaces consumed by the fetch core, plus an in-memory record store."""
from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fit_data.models import Credentials, METRIC_DEFAULTS, METRIC_FIELDS


class CredentialStore(ABC):
    @abstractmethod
    def get(self, user_id: str) -> Optional[Credentials]:
        """Return the stored credential pair or None."""

    @abstractmethod
    def set(self, user_id: str, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Atomically replace the pair. A None refresh token keeps the stored one."""


class DailyRecordStore(ABC):
    @abstractmethod
    def upsert(self, user_id: str, day: date, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or field-wise merge the record for (user_id, day); return the stored row."""

    @abstractmethod
    def get(self, user_id: str, day: date) -> Optional[Dict[str, Any]]:
        ...

    def exists(self, user_id: str, day: date) -> bool:
        return self.get(user_id, day) is not None

    @abstractmethod
    def latest(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def between(self, user_id: str, start: date, end: date) -> List[Dict[str, Any]]:
        """Records with start <= day <= end, newest first."""


def today_or_latest(records: DailyRecordStore, user_id: str, today: date) -> Tuple[Optional[Dict[str, Any]], bool]:
    """Today's record if stored, else the most recent one. The flag tells which."""
    row = records.get(user_id, today)
    if row is not None:
        return row, True
    return records.latest(user_id), False


def merge_record(existing: Optional[Dict[str, Any]], partial: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(partial) - set(METRIC_FIELDS)
    if unknown:
        raise ValueError(f'Unknown metric fields: {sorted(unknown)}')
    merged = dict(existing) if existing else dict(METRIC_DEFAULTS)
    merged.update(partial)
    return merged


class MemoryDailyRecordStore(DailyRecordStore):
    """Process-local store; used for dry runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[tuple, Dict[str, Any]] = {}

    def upsert(self, user_id, day, partial):
        with self._lock:
            row = merge_record(self._rows.get((user_id, day)), partial)
            row.update(user_id=user_id, day=day, fetched_at=datetime.now(timezone.utc))
            self._rows[(user_id, day)] = row
            return dict(row)

    def get(self, user_id, day):
        with self._lock:
            row = self._rows.get((user_id, day))
            return dict(row) if row else None

    def latest(self, user_id):
        rows = self.between(user_id, date.min, date.max)
        return rows[0] if rows else None

    def between(self, user_id, start, end):
        with self._lock:
            rows = [dict(r) for (uid, day), r in self._rows.items() if uid == user_id and start <= day <= end]
        return sorted(rows, key=lambda r: r['day'], reverse=True)
