"""Clock and identifier providers with a deterministic mode.

Waiver expiry, report timestamps and generated ids all read the clock
through this module so tests can pin them.

Usage in tests:
    with determinism_mode():
        waiver = create_waiver(...)   # fixed approved_at, fixed id

    with frozen_time(datetime(2030, 1, 1, tzinfo=UTC)):
        store.is_waived("c1", "r1")
"""

from __future__ import annotations

import contextlib
import threading
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

# Thread-local state for determinism mode
_state = threading.local()

FIXED_TIMESTAMP_DT = datetime(2025, 1, 1, 0, 0, 0, tzinfo=UTC)
FIXED_ID_HEX = "000000000000"


def is_deterministic() -> bool:
    """Check if determinism mode is active."""
    return getattr(_state, "deterministic", False)


@contextlib.contextmanager
def determinism_mode() -> Generator[None, None, None]:
    """Context manager pinning the clock and id generator."""
    prev = getattr(_state, "deterministic", False)
    _state.deterministic = True
    try:
        yield
    finally:
        _state.deterministic = prev


@contextlib.contextmanager
def frozen_time(moment: datetime) -> Generator[None, None, None]:
    """Context manager pinning ``stable_now`` to an arbitrary moment."""
    prev = getattr(_state, "frozen", None)
    _state.frozen = ensure_aware(moment)
    try:
        yield
    finally:
        _state.frozen = prev


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def stable_now() -> datetime:
    """Return current UTC time, or the pinned time."""
    frozen = getattr(_state, "frozen", None)
    if frozen is not None:
        return frozen
    if is_deterministic():
        return FIXED_TIMESTAMP_DT
    return datetime.now(UTC)


def stable_timestamp() -> str:
    """Return ISO-8601 UTC timestamp for ``stable_now``."""
    return stable_now().isoformat()


def new_id(prefix: str) -> str:
    """Generate ``<prefix>-<hex>``; fixed hex in determinism mode."""
    if is_deterministic():
        return f"{prefix}-{FIXED_ID_HEX}"
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO timestamp (``Z`` suffix allowed) into an aware datetime."""
    if isinstance(value, datetime):
        return ensure_aware(value)
    return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
