"""
Cooldown store — per-(template, child) "last shown" timestamps.

Persistence format
------------------
A JSON array under one namespaced key:

    [{"templateId": "goal_stalled", "childId": "c1",
      "lastShownAt": "2026-03-01T18:00:00+00:00"}, ...]

`lastShownAt` is written as ISO-8601; ISO-8601 strings and Unix epoch
numbers are both accepted on read.

Rules
-----
  - A template is on cooldown for a child while now < last_shown_at + 3 days.
  - One record per (template, child); writes upsert.
  - Records shown 30 or more days before the write are pruned.
  - A missing or corrupt blob is read as "no records". Cooldowns are a UX
    nicety, never a reason to fail a request.
  - Reads go through an in-memory cache owned by the store; every write
    replaces it, `invalidate_cache()` drops it.

Writes are a single load/modify/save under a per-key process lock; the SQL
backend seeds the row (`INSERT ... ON CONFLICT DO NOTHING`) and then takes a
row lock (`SELECT ... FOR UPDATE`) where the database supports it, so
concurrent first writes from several workers serialize on the same row.
"""
from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from coachcards.models.app_state import AppState
from coachcards.services.canonical import COOLDOWN_DAYS, AnalysisWindow, as_utc, shift

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CooldownRecord:
    template_id: str
    child_id: str
    last_shown_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_shown_at", as_utc(self.last_shown_at))

    def to_dict(self) -> dict[str, str]:
        return {
            "templateId": self.template_id,
            "childId": self.child_id,
            "lastShownAt": self.last_shown_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CooldownRecord":
        """Raises KeyError / TypeError / ValueError on a malformed record."""
        template_id = data["templateId"]
        child_id = data["childId"]
        if not isinstance(template_id, str) or not isinstance(child_id, str):
            raise TypeError("templateId and childId must be strings")
        return cls(template_id, child_id, _parse_timestamp(data["lastShownAt"]))


@dataclass(frozen=True)
class ActiveCooldown:
    template_id: str
    child_id: str
    ends_at: datetime


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, bool):
        raise TypeError("lastShownAt must be a timestamp, not a boolean")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        return as_utc(datetime.fromisoformat(value))
    raise TypeError(f"Unsupported lastShownAt value: {value!r}")


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class CooldownBackend(Protocol):
    key: str

    def load(self, for_update: bool = False) -> Optional[str]: ...

    def save(self, payload: str) -> None: ...

    def delete(self) -> None: ...


class InMemoryCooldownBackend:
    """Dict-backed blob storage; used by tests and embedded engines."""

    def __init__(self, key: str = "insightsEngine.cooldowns", blobs: Optional[dict[str, str]] = None):
        self.key = key
        self.blobs: dict[str, str] = blobs if blobs is not None else {}

    def load(self, for_update: bool = False) -> Optional[str]:
        return self.blobs.get(self.key)

    def save(self, payload: str) -> None:
        self.blobs[self.key] = payload

    def delete(self) -> None:
        self.blobs.pop(self.key, None)


class SqlCooldownBackend:
    """Stores the blob in the `app_state` table. Commits on every write."""

    def __init__(self, db: Session, key: str):
        self.db = db
        self.key = key

    def load(self, for_update: bool = False) -> Optional[str]:
        query = self.db.query(AppState).filter(AppState.key == self.key)
        if for_update:
            self._ensure_row()
            query = query.with_for_update()
        row = query.first()
        return row.value if row else None

    def _ensure_row(self) -> None:
        """Create an empty blob row if missing, so the locked read has a row to lock."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(AppState).values(key=self.key, value="[]")
        elif dialect == "sqlite":
            stmt = sqlite_insert(AppState).values(key=self.key, value="[]")
        else:
            return
        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["key"]))

    def save(self, payload: str) -> None:
        row = self.db.get(AppState, self.key)
        if row is None:
            self.db.add(AppState(key=self.key, value=payload))
        else:
            row.value = payload
        self.db.commit()

    def delete(self) -> None:
        self.db.query(AppState).filter(AppState.key == self.key).delete()
        self.db.commit()


# ---------------------------------------------------------------------------
# Per-key write locks
# ---------------------------------------------------------------------------

_key_locks: dict[str, threading.Lock] = {}
_key_locks_guard = threading.Lock()


def _lock_for(key: str) -> threading.Lock:
    with _key_locks_guard:
        lock = _key_locks.get(key)
        if lock is None:
            lock = _key_locks[key] = threading.Lock()
        return lock


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class CooldownStore:

    def __init__(
        self,
        backend: CooldownBackend,
        cooldown_days: int = COOLDOWN_DAYS,
        retention_days: int = int(AnalysisWindow.THIRTY_DAYS),
    ):
        self.backend = backend
        self.cooldown_period = timedelta(days=cooldown_days)
        self.retention_period = timedelta(days=retention_days)
        self._cache: Optional[list[CooldownRecord]] = None

    # -- reads ---------------------------------------------------------------

    def records(self) -> list[CooldownRecord]:
        if self._cache is None:
            self._cache = self._decode(self.backend.load())
            logger.debug("Loaded %d cooldown records from %s", len(self._cache), self.backend.key)
        return list(self._cache)

    def _find(self, template_id: str, child_id: str) -> Optional[CooldownRecord]:
        return next(
            (r for r in self.records() if r.template_id == template_id and r.child_id == child_id),
            None,
        )

    def is_on_cooldown(self, template_id: str, child_id: str, now: datetime) -> bool:
        end = self.cooldown_end(template_id, child_id)
        return end is not None and as_utc(now) < end

    def cooldown_end(self, template_id: str, child_id: str) -> Optional[datetime]:
        record = self._find(template_id, child_id)
        if record is None:
            return None
        return shift(record.last_shown_at, self.cooldown_period)

    def active_cooldowns(self, now: datetime) -> list[ActiveCooldown]:
        now = as_utc(now)
        active = []
        for record in self.records():
            ends_at = shift(record.last_shown_at, self.cooldown_period)
            if ends_at > now:
                active.append(ActiveCooldown(record.template_id, record.child_id, ends_at))
        return sorted(active, key=lambda c: (c.child_id, c.template_id))

    # -- writes --------------------------------------------------------------

    def record_shown(self, template_id: str, child_id: str, at: datetime) -> None:
        self.record_many([(template_id, child_id)], at)

    def record_many(self, pairs: Iterable[tuple[str, str]], at: datetime) -> None:
        """Upsert one record per (template, child) pair, then prune, in one write."""
        at = as_utc(at)
        if not self._has_window_end(at):
            logger.warning("Cooldown start %s has no representable window end, not recorded", at.isoformat())
            return
        pairs = list(dict.fromkeys(pairs))
        with self._exclusive():
            records = self._decode(self.backend.load(for_update=True))
            shown = set(pairs)
            records = [r for r in records if (r.template_id, r.child_id) not in shown]
            records.extend(CooldownRecord(t, c, at) for t, c in pairs)
            cutoff = shift(at, -self.retention_period)
            records = [r for r in records if r.last_shown_at > cutoff]
            self._save(records)

    def clear_all(self) -> None:
        with self._exclusive():
            self.backend.delete()
            self._cache = None

    def clear_child(self, child_id: str) -> None:
        with self._exclusive():
            records = self._decode(self.backend.load(for_update=True))
            self._save([r for r in records if r.child_id != child_id])

    def invalidate_cache(self) -> None:
        self._cache = None

    # -- internals -----------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with _lock_for(self.backend.key):
            yield

    def _has_window_end(self, start: datetime) -> bool:
        try:
            start + self.cooldown_period
        except OverflowError:
            return False
        return True

    def _save(self, records: list[CooldownRecord]) -> None:
        self.backend.save(json.dumps([r.to_dict() for r in records]))
        self._cache = records

    def _decode(self, payload: Optional[str]) -> list[CooldownRecord]:
        if not payload:
            return []
        try:
            raw = json.loads(payload)
        except (ValueError, TypeError, RecursionError) as exc:
            logger.warning("Corrupt cooldown payload under %s, ignoring: %s", self.backend.key, exc)
            return []
        if not isinstance(raw, list):
            logger.warning("Cooldown payload under %s is not a list, ignoring", self.backend.key)
            return []

        records = []
        for item in raw:
            try:
                record = CooldownRecord.from_dict(item)
            except (KeyError, TypeError, ValueError, OverflowError) as exc:
                logger.warning("Skipping malformed cooldown record %r: %s", item, exc)
                continue
            if not self._has_window_end(record.last_shown_at):
                logger.warning("Skipping cooldown record %r: window end out of range", item)
                continue
            records.append(record)
        return records
