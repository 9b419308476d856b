"""Auto-attach scope patterns.

Pattern formats:
- ``*``: every resource
- ``provider:<p>`` / ``type:<t>`` / ``region:<r>``: exact field match
- ``tag:<k>``: tag key present
- ``tag:<k>=<v>``: tag value match

Patterns split on the first ``:`` and the first ``=`` only, so values may
themselves contain colons (``type:azure:storage``).
"""

from __future__ import annotations

from dataclasses import dataclass

from complycore.errors import PolicyValidationError
from complycore.policy.models import Policy
from complycore.resources import Resource

PATTERN_KINDS = ("provider", "type", "region", "tag")


@dataclass(frozen=True)
class ScopePattern:
    """Parsed auto-attach pattern."""

    kind: str
    key: str = ""
    value: str | None = None

    def matches(self, resource: Resource) -> bool:
        if self.kind == "*":
            return True
        if self.kind == "provider":
            return resource.provider == self.key
        if self.kind == "type":
            return resource.type == self.key
        if self.kind == "region":
            return resource.region == self.key
        if self.kind == "tag":
            if self.value is None:
                return self.key in resource.tags
            return resource.tags.get(self.key) == self.value
        return False


def parse_pattern(pattern: str) -> ScopePattern:
    """Parse a pattern without validating its kind."""
    if pattern == "*":
        return ScopePattern(kind="*")
    kind, sep, rest = pattern.partition(":")
    if not sep:
        return ScopePattern(kind=pattern)
    if kind == "tag":
        key, eq, value = rest.partition("=")
        return ScopePattern(kind=kind, key=key, value=value if eq else None)
    return ScopePattern(kind=kind, key=rest)


def validate_pattern(pattern: str, path: str = "auto_attach_patterns") -> ScopePattern:
    """Parse a pattern, rejecting unknown kinds and empty keys.

    Raises:
        PolicyValidationError: If the pattern is malformed.
    """
    if not isinstance(pattern, str) or not pattern:
        raise PolicyValidationError(f"Invalid auto-attach pattern: {pattern!r}", path)
    parsed = parse_pattern(pattern)
    if parsed.kind == "*":
        return parsed
    if parsed.kind not in PATTERN_KINDS:
        raise PolicyValidationError(
            f"Invalid auto-attach pattern: {pattern!r}. "
            f"Must be '*' or one of: {[f'{k}:<value>' for k in PATTERN_KINDS]}",
            path,
        )
    if not parsed.key:
        raise PolicyValidationError(f"Auto-attach pattern {pattern!r} has an empty value", path)
    return parsed


class ScopeMatcher:
    """Decides whether a policy applies to a resource.

    Parsed patterns are cached per pattern string.
    """

    def __init__(self) -> None:
        self._cache: dict[str, ScopePattern] = {}

    def _parsed(self, pattern: str) -> ScopePattern:
        parsed = self._cache.get(pattern)
        if parsed is None:
            parsed = parse_pattern(pattern)
            self._cache[pattern] = parsed
        return parsed

    def applies(self, policy: Policy, resource: Resource) -> bool:
        """True iff the policy has no patterns or any pattern matches."""
        if not policy.auto_attach_patterns:
            return True
        return any(self._parsed(p).matches(resource) for p in policy.auto_attach_patterns)
