"""
Result stores.

``SessionStore`` holds the current analysis per browser session (one slot,
overwritten on every analysis). Slots expire after a period of inactivity and
the oldest are evicted once the store is full.

The history log keeps a capped, most-recent-first list of ``HistoryEntry``
projections per client and survives restarts when backed by sqlite.

Both keep values as JSON text under a fixed key, so a corrupt value simply
reads as empty.
"""
import json
import logging
import os
import sqlite3
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .models import HistoryEntry, SoilAnalysisRecord

logger = logging.getLogger(__name__)

CURRENT_ANALYSIS_KEY = "currentAnalysis"
HISTORY_KEY = "analysisHistory"
HISTORY_LIMIT = 20
SESSION_TTL = 12 * 60 * 60
MAX_SESSIONS = 1000


def history_key(client_id: str) -> str:
    return f"{HISTORY_KEY}:{client_id}"


class SessionStore:
    """Single-slot store per session, bounded by idle TTL and slot count."""

    def __init__(self, ttl: float = SESSION_TTL, max_sessions: int = MAX_SESSIONS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_sessions = max_sessions
        self._clock = clock
        self._slots: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._slots)

    def _purge_expired(self) -> None:
        now = self._clock()
        # Slots are kept in last-touched order, so expired ones sit at the front.
        while self._slots:
            session_id, (expires_at, _) = next(iter(self._slots.items()))
            if expires_at > now:
                break
            self._slots.popitem(last=False)
            logger.debug("session %s expired", session_id)

    def get(self, session_id: str) -> Optional[SoilAnalysisRecord]:
        with self._lock:
            self._purge_expired()
            slot = self._slots.get(session_id)
            if slot is None:
                return None
            try:
                record = SoilAnalysisRecord.model_validate_json(slot[1])
            except ValidationError:
                logger.warning("discarding unreadable %s for session %s", CURRENT_ANALYSIS_KEY, session_id)
                self._slots.pop(session_id, None)
                return None
            self._touch(session_id, slot[1])
            return record

    def set(self, session_id: str, record: SoilAnalysisRecord) -> None:
        raw = record.model_dump_json(exclude_none=True)
        with self._lock:
            self._purge_expired()
            self._touch(session_id, raw)
            while len(self._slots) > self.max_sessions:
                evicted, _ = self._slots.popitem(last=False)
                logger.info("evicted session %s (store full)", evicted)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._slots.pop(session_id, None)

    def _touch(self, session_id: str, raw: str) -> None:
        self._slots[session_id] = (self._clock() + self.ttl, raw)
        self._slots.move_to_end(session_id)


class _HistoryLog:
    """Shared list/prepend/clear logic over one raw JSON value per client."""

    def __init__(self, limit: int = HISTORY_LIMIT):
        self.limit = limit

    def _read_raw(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write_raw(self, key: str, value: str) -> None:
        raise NotImplementedError

    def _delete_raw(self, key: str) -> None:
        raise NotImplementedError

    def list(self, client_id: str) -> List[HistoryEntry]:
        key = history_key(client_id)
        raw = self._read_raw(key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("history is not a list")
            return [HistoryEntry.model_validate(item) for item in items]
        except (ValueError, ValidationError) as e:
            logger.warning("resetting corrupt %s: %s", key, e)
            self._delete_raw(key)
            return []

    def prepend(self, client_id: str, entry: HistoryEntry) -> List[HistoryEntry]:
        entries = ([entry] + self.list(client_id))[: self.limit]
        value = json.dumps([e.model_dump(mode="json", exclude_none=True) for e in entries])
        self._write_raw(history_key(client_id), value)
        return entries

    def clear(self, client_id: str) -> None:
        self._delete_raw(history_key(client_id))


class MemoryHistoryStore(_HistoryLog):
    def __init__(self, limit: int = HISTORY_LIMIT):
        super().__init__(limit)
        self._raw: Dict[str, str] = {}

    def _read_raw(self, key: str) -> Optional[str]:
        return self._raw.get(key)

    def _write_raw(self, key: str, value: str) -> None:
        self._raw[key] = value

    def _delete_raw(self, key: str) -> None:
        self._raw.pop(key, None)


class HistoryStore(_HistoryLog):
    """History log persisted in a sqlite key/value table."""

    def __init__(self, db_path: str, limit: int = HISTORY_LIMIT):
        super().__init__(limit)
        self.db_path = db_path
        self.init_db()

    def _get_conn(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def _read_raw(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return row["value"] if row else None

    def _write_raw(self, key: str, value: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()

    def _delete_raw(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()
