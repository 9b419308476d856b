"""Time-bounded waivers that reclassify violations without deleting them.

At most one waiver exists per ``(control_id, resource_id)`` pair; adding a
second one replaces the first. A waiver is active while ``expires_at`` is
strictly after the evaluation time, checked at query time. A failed write
leaves the store unchanged.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from complycore.determinism import ensure_aware, new_id, parse_timestamp, stable_now
from complycore.errors import StoreError

logger = logging.getLogger(__name__)

DEFAULT_WAIVER_DAYS = 90

WaiverKey = tuple[str, str]


@dataclass(frozen=True)
class Waiver:
    """An approved exception for one control (or policy) on one resource.

    Attributes:
        id: Waiver identifier
        control_id: Control id or policy id being waived
        resource_id: Resource the waiver covers
        reason: Why the exception exists
        approved_by: Who approved it
        approved_at: When it was approved
        expires_at: When it stops suppressing violations
    """

    id: str
    control_id: str
    resource_id: str
    reason: str
    approved_by: str
    approved_at: datetime
    expires_at: datetime

    @property
    def key(self) -> WaiverKey:
        return (self.control_id, self.resource_id)

    def is_active(self, now: datetime | None = None) -> bool:
        """Check if the waiver is still in force."""
        moment = ensure_aware(now) if now is not None else stable_now()
        return ensure_aware(self.expires_at) > moment

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "control_id": self.control_id,
            "resource_id": self.resource_id,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Waiver:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            control_id=data["control_id"],
            resource_id=data["resource_id"],
            reason=data.get("reason", ""),
            approved_by=data.get("approved_by", ""),
            approved_at=parse_timestamp(data["approved_at"]),
            expires_at=parse_timestamp(data["expires_at"]),
        )


def create_waiver(
    control_id: str,
    resource_id: str,
    reason: str,
    approved_by: str,
    expires_in_days: int = DEFAULT_WAIVER_DAYS,
) -> Waiver:
    """Build a waiver approved now and expiring ``expires_in_days`` later."""
    now = stable_now()
    return Waiver(
        id=new_id("waiver"),
        control_id=control_id,
        resource_id=resource_id,
        reason=reason,
        approved_by=approved_by,
        approved_at=now,
        expires_at=now + timedelta(days=expires_in_days),
    )


class WaiverSnapshot:
    """Active waiver keys frozen at one moment.

    Scans take one snapshot up front so every violation in the scan sees
    the same waiver state.
    """

    __slots__ = ("_keys", "taken_at")

    def __init__(self, waivers: list[Waiver], now: datetime):
        self.taken_at = now
        self._keys = frozenset(w.key for w in waivers if w.is_active(now))

    def is_waived(self, control_id: str, resource_id: str) -> bool:
        return (control_id, resource_id) in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class WaiverStore(ABC):
    """Storage contract for waivers."""

    default_days: int = DEFAULT_WAIVER_DAYS

    def grant(
        self,
        control_id: str,
        resource_id: str,
        reason: str,
        approved_by: str,
        expires_in_days: int | None = None,
    ) -> Waiver:
        """Create a waiver with this store's default lifetime and add it."""
        days = expires_in_days if expires_in_days is not None else self.default_days
        return self.add(create_waiver(control_id, resource_id, reason, approved_by, days))

    @abstractmethod
    def add(self, waiver: Waiver) -> Waiver:
        """Store a waiver, replacing any waiver for the same key."""

    @abstractmethod
    def remove(self, waiver_id: str) -> bool:
        """Remove a waiver by id; False if it did not exist."""

    @abstractmethod
    def get(self, waiver_id: str) -> Waiver | None:
        """Get a waiver by id."""

    @abstractmethod
    def list(self) -> list[Waiver]:
        """All stored waivers, expired ones included."""

    def list_active(self, now: datetime | None = None) -> list[Waiver]:
        """Waivers whose ``expires_at`` is after ``now``."""
        moment = ensure_aware(now) if now is not None else stable_now()
        return [w for w in self.list() if w.is_active(moment)]

    def is_waived(self, control_id: str, resource_id: str, now: datetime | None = None) -> bool:
        """Check for an active waiver on the pair."""
        moment = ensure_aware(now) if now is not None else stable_now()
        return any(
            w.control_id == control_id and w.resource_id == resource_id and w.is_active(moment)
            for w in self.list()
        )

    def snapshot(self, now: datetime | None = None) -> WaiverSnapshot:
        """Freeze the active set for one scan."""
        moment = ensure_aware(now) if now is not None else stable_now()
        return WaiverSnapshot(self.list(), moment)


class InMemoryWaiverStore(WaiverStore):
    """Waiver store held in a dictionary keyed by ``(control_id, resource_id)``.

    Mutations build a new mapping and commit it through ``_write``; the
    current mapping is only replaced once the write succeeded.
    """

    def __init__(
        self, waivers: list[Waiver] | None = None, default_days: int = DEFAULT_WAIVER_DAYS
    ) -> None:
        self.default_days = default_days
        self._lock = threading.RLock()
        self._waivers: dict[WaiverKey, Waiver] = {}
        for waiver in waivers or ():
            self._waivers[waiver.key] = waiver

    def _read(self) -> dict[WaiverKey, Waiver]:
        return self._waivers

    def _write(self, waivers: dict[WaiverKey, Waiver]) -> None:
        self._waivers = waivers

    def add(self, waiver: Waiver) -> Waiver:
        with self._lock:
            waivers = dict(self._read())
            replaced = waivers.get(waiver.key)
            waivers[waiver.key] = waiver
            self._write(waivers)
        if replaced is not None:
            logger.info(
                "Replaced waiver %s with %s for %s on %s",
                replaced.id,
                waiver.id,
                waiver.control_id,
                waiver.resource_id,
            )
        else:
            logger.info(
                "Added waiver %s for %s on %s", waiver.id, waiver.control_id, waiver.resource_id
            )
        return waiver

    def remove(self, waiver_id: str) -> bool:
        with self._lock:
            waivers = dict(self._read())
            for key, waiver in waivers.items():
                if waiver.id == waiver_id:
                    del waivers[key]
                    self._write(waivers)
                    logger.info("Removed waiver %s", waiver_id)
                    return True
        return False

    def get(self, waiver_id: str) -> Waiver | None:
        for waiver in self.list():
            if waiver.id == waiver_id:
                return waiver
        return None

    def list(self) -> list[Waiver]:
        with self._lock:
            return list(self._read().values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._read())


_path_locks: dict[Path, threading.RLock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    """One lock per file, shared by every store opened on it."""
    key = path.resolve()
    with _path_locks_guard:
        return _path_locks.setdefault(key, threading.RLock())


class JsonFileWaiverStore(InMemoryWaiverStore):
    """Waiver store persisted to a single JSON document.

    The file is the only state: it is re-read for every query and under the
    per-file lock before every mutation, then rewritten atomically through a
    temporary file in the same directory. A missing file starts an empty
    store; an unreadable or corrupt file raises ``StoreError``.
    """

    def __init__(self, path: Path | str, default_days: int = DEFAULT_WAIVER_DAYS) -> None:
        self.path = Path(path)
        super().__init__(default_days=default_days)
        self._lock = _lock_for(self.path)
        # Surface a corrupt file at open time.
        self._read()

    def _read(self) -> dict[WaiverKey, Waiver]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            waivers = [Waiver.from_dict(item) for item in data.get("waivers", [])]
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read waiver store: {e}", str(self.path)) from e
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StoreError(f"Corrupt waiver store: {e}", str(self.path)) from e
        return {w.key: w for w in waivers}

    def _write(self, waivers: dict[WaiverKey, Waiver]) -> None:
        payload = {"waivers": [w.to_dict() for w in waivers.values()]}
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StoreError(f"Cannot write waiver store: {e}", str(self.path)) from e
