"""Unified severity levels for complycore.

Policies, controls and violations all share this enum, so severity
aggregation is order-independent and comparable across both evaluation
modes.
"""

from __future__ import annotations

from enum import Enum

_ORDER: dict[str, int] = {
    "info": 0,
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}


class Severity(Enum):
    """Severity of a policy, control or violation.

    This is the single source of truth for severity levels.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @classmethod
    def from_string(cls, value: str | Severity) -> Severity:
        """Parse severity from string (case-insensitive)."""
        if isinstance(value, Severity):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown severity: {value}")

    @property
    def rank(self) -> int:
        """Numeric rank (higher = more severe)."""
        return _ORDER[self.value]

    def __lt__(self, other: Severity) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Severity) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: Severity) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: Severity) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


def severity_order(severity: Severity | str) -> int:
    """Get numeric order for severity (higher = more severe)."""
    return Severity.from_string(severity).rank


def empty_severity_counts() -> dict[str, int]:
    """Per-severity counter with every level present, most severe first."""
    return {s.value: 0 for s in sorted(Severity, reverse=True)}


def highest_severity(severities: list[Severity]) -> Severity | None:
    """Return the most severe entry, or None for an empty list."""
    if not severities:
        return None
    return max(severities)
