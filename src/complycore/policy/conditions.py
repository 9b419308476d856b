"""Closed condition language for policy rules and control predicates.

Supports:
- Field comparisons against dotted paths (equals, contains, regex, gt/lt)
- Existence and set-membership checks
- Tag and resource-identity shortcuts
- Boolean composition (and/or/not)
- Named ``custom`` conditions resolved through an injected registry

Every node is an immutable dataclass. Evaluation is total: missing fields,
wrong types and unresolved ``custom`` names evaluate to a non-match and
never raise. Malformed nodes (unknown type, bad regex) are rejected when
the node is built, which is when a policy is loaded or saved.
"""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from complycore.errors import PolicyValidationError
from complycore.resources import MISSING, EvaluationInput, FlatView, Resource, flatten_input

logger = logging.getLogger(__name__)

CustomConditionFn = Callable[[Mapping[str, Any], FlatView], bool]


def _strict_equals(actual: Any, expected: Any) -> bool:
    """Equality that never conflates booleans with numbers."""
    if actual is MISSING:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    return actual == expected


def _to_number(value: Any) -> float:
    """Coerce to float; anything non-numeric becomes NaN."""
    if value is MISSING or value is None:
        return math.nan
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _require(data: Mapping[str, Any], key: str, path: str) -> Any:
    if key not in data:
        raise PolicyValidationError(f"Missing required field: {key}", path)
    return data[key]


def _require_str(data: Mapping[str, Any], key: str, path: str) -> str:
    value = _require(data, key, path)
    if not isinstance(value, str) or not value:
        raise PolicyValidationError(f"{key} must be a non-empty string", f"{path}.{key}")
    return value


class CustomConditionRegistry:
    """Registry of named ``custom`` condition handlers.

    A handler receives the node's ``args`` and the flattened view and
    returns a bool. Unknown names and handlers that raise resolve to False.

    Example:
        registry = CustomConditionRegistry()

        @registry.register("has_owner_email")
        def has_owner_email(args, view):
            return "@" in str(view.get("resource.tags.owner"))
    """

    def __init__(self) -> None:
        self._handlers: dict[str, CustomConditionFn] = {}

    def register(self, name: str, handler: CustomConditionFn | None = None):
        """Register ``handler`` under ``name``; usable as a decorator."""
        if handler is None:
            def decorator(fn: CustomConditionFn) -> CustomConditionFn:
                self._handlers[name] = fn
                return fn
            return decorator
        self._handlers[name] = handler
        return handler

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def resolve(self, name: str, args: Mapping[str, Any], view: FlatView) -> bool:
        """Run the handler for ``name``."""
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("Custom condition %r is not registered; treating as no match", name)
            return False
        try:
            return bool(handler(args, view))
        except Exception:
            logger.warning("Custom condition %r raised; treating as no match", name, exc_info=True)
            return False


class Condition(ABC):
    """Base class of all condition nodes."""

    type: ClassVar[str]

    @abstractmethod
    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        """Evaluate against a flattened view."""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Convert to wire dictionary."""

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        raise NotImplementedError

    @staticmethod
    def from_dict(data: Mapping[str, Any] | Condition, path: str = "condition") -> Condition:
        """Build a condition tree from its wire form.

        Raises:
            PolicyValidationError: If the tree contains an unknown node type,
                a missing field or an invalid regex.
        """
        if isinstance(data, Condition):
            return data
        if not isinstance(data, Mapping):
            raise PolicyValidationError(f"Expected object, got {type(data).__name__}", path)
        kind = data.get("type")
        node_cls = CONDITION_TYPES.get(kind) if isinstance(kind, str) else None
        if node_cls is None:
            raise PolicyValidationError(f"Unknown condition type: {kind!r}", f"{path}.type")
        return node_cls._parse(data, path)


# -- Field comparisons -------------------------------------------------------


@dataclass(frozen=True)
class _FieldValue(Condition):
    field: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "field": self.field, "value": self.value}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        return cls(field=_require_str(data, "field", path), value=_require(data, "value", path))


@dataclass(frozen=True)
class FieldEquals(_FieldValue):
    type: ClassVar[str] = "field_equals"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return _strict_equals(view.get(self.field), self.value)


@dataclass(frozen=True)
class FieldNotEquals(_FieldValue):
    """True when the field differs from ``value``, including when it is absent."""

    type: ClassVar[str] = "field_not_equals"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return not _strict_equals(view.get(self.field), self.value)


@dataclass(frozen=True)
class FieldContains(_FieldValue):
    """Substring test for strings, membership test for lists."""

    type: ClassVar[str] = "field_contains"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        actual = view.get(self.field)
        if isinstance(actual, str):
            return _stringify(self.value) in actual
        if isinstance(actual, (list, tuple)):
            return any(_strict_equals(item, self.value) for item in actual)
        return False


@dataclass(frozen=True)
class FieldGreaterThan(_FieldValue):
    type: ClassVar[str] = "field_gt"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return _to_number(view.get(self.field)) > _to_number(self.value)


@dataclass(frozen=True)
class FieldLessThan(_FieldValue):
    type: ClassVar[str] = "field_lt"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return _to_number(view.get(self.field)) < _to_number(self.value)


_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


@dataclass(frozen=True)
class FieldMatches(Condition):
    """Regex search against the stringified field value.

    Flags: ``i`` (ignore case), ``m`` (multiline), ``s`` (dot matches newline).
    """

    type: ClassVar[str] = "field_matches"

    field: str
    pattern: str
    flags: str = ""
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        flags = 0
        for flag in self.flags:
            if flag not in _REGEX_FLAGS:
                raise PolicyValidationError(f"Unknown regex flag: {flag!r}", "flags")
            flags |= _REGEX_FLAGS[flag]
        try:
            compiled = re.compile(self.pattern, flags)
        except re.error as e:
            raise PolicyValidationError(f"Invalid regex pattern: {e}", "pattern") from e
        object.__setattr__(self, "_regex", compiled)

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        actual = view.get(self.field)
        if actual is MISSING:
            return False
        return self._regex.search(_stringify(actual)) is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type, "field": self.field, "pattern": self.pattern}
        if self.flags:
            result["flags"] = self.flags
        return result

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        pattern = _require(data, "pattern", path)
        if not isinstance(pattern, str):
            raise PolicyValidationError("pattern must be a string", f"{path}.pattern")
        flags = data.get("flags", "")
        if not isinstance(flags, str):
            raise PolicyValidationError("flags must be a string", f"{path}.flags")
        try:
            return cls(
                field=_require_str(data, "field", path),
                pattern=pattern,
                flags=flags,
            )
        except PolicyValidationError as e:
            if e.path and e.path.startswith(path):
                raise
            raise PolicyValidationError(e.message, f"{path}.{e.path}") from e


@dataclass(frozen=True)
class _FieldOnly(Condition):
    field: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "field": self.field}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        return cls(field=_require_str(data, "field", path))


@dataclass(frozen=True)
class FieldExists(_FieldOnly):
    type: ClassVar[str] = "field_exists"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return self.field in view


@dataclass(frozen=True)
class FieldNotExists(_FieldOnly):
    type: ClassVar[str] = "field_not_exists"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return self.field not in view


@dataclass(frozen=True)
class _FieldValues(Condition):
    field: str
    values: tuple[Any, ...]

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(self.values))

    def _member(self, view: FlatView) -> bool:
        actual = view.get(self.field)
        return any(_strict_equals(actual, v) for v in self.values)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "field": self.field, "values": list(self.values)}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        values = _require(data, "values", path)
        if not isinstance(values, (list, tuple)):
            raise PolicyValidationError("values must be a list", f"{path}.values")
        return cls(field=_require_str(data, "field", path), values=tuple(values))


@dataclass(frozen=True)
class FieldIn(_FieldValues):
    type: ClassVar[str] = "field_in"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return self._member(view)


@dataclass(frozen=True)
class FieldNotIn(_FieldValues):
    """True when the field is absent or not one of ``values``."""

    type: ClassVar[str] = "field_not_in"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return not self._member(view)


# -- Tag and identity shortcuts ----------------------------------------------


@dataclass(frozen=True)
class TagMissing(Condition):
    type: ClassVar[str] = "tag_missing"

    tag: str

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return self.tag not in view.tags

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "tag": self.tag}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        return cls(tag=_require_str(data, "tag", path))


@dataclass(frozen=True)
class TagEquals(Condition):
    type: ClassVar[str] = "tag_equals"

    tag: str
    value: Any

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return _strict_equals(view.tags.get(self.tag, MISSING), self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "tag": self.tag, "value": self.value}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        return cls(tag=_require_str(data, "tag", path), value=_require(data, "value", path))


@dataclass(frozen=True)
class ResourceTypeIs(Condition):
    type: ClassVar[str] = "resource_type"

    resource_type: str

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return view.resource is not None and view.resource.type == self.resource_type

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "resource_type": self.resource_type}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        key = "resourceType" if "resourceType" in data else "resource_type"
        return cls(resource_type=_require_str(data, key, path))


@dataclass(frozen=True)
class ProviderIs(Condition):
    type: ClassVar[str] = "provider"

    provider: str

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return view.resource is not None and view.resource.provider == self.provider

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "provider": self.provider}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        return cls(provider=_require_str(data, "provider", path))


@dataclass(frozen=True)
class RegionIs(Condition):
    type: ClassVar[str] = "region"

    region: str

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return view.resource is not None and view.resource.region == self.region

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "region": self.region}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        return cls(region=_require_str(data, "region", path))


# -- Combinators ---------------------------------------------------------------


@dataclass(frozen=True)
class _Composite(Condition):
    conditions: tuple[Condition, ...]

    def __post_init__(self):
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "conditions": [c.to_dict() for c in self.conditions]}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        children = _require(data, "conditions", path)
        if not isinstance(children, (list, tuple)):
            raise PolicyValidationError("conditions must be a list", f"{path}.conditions")
        return cls(
            conditions=tuple(
                Condition.from_dict(child, f"{path}.conditions[{i}]")
                for i, child in enumerate(children)
            )
        )


@dataclass(frozen=True)
class And(_Composite):
    """All children must hold (vacuously true when empty)."""

    type: ClassVar[str] = "and"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return all(c.evaluate(view, registry) for c in self.conditions)


@dataclass(frozen=True)
class Or(_Composite):
    """At least one child must hold (false when empty)."""

    type: ClassVar[str] = "or"

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return any(c.evaluate(view, registry) for c in self.conditions)


@dataclass(frozen=True)
class Not(Condition):
    type: ClassVar[str] = "not"

    condition: Condition

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        return not self.condition.evaluate(view, registry)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "condition": self.condition.to_dict()}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        child = _require(data, "condition", path)
        return cls(condition=Condition.from_dict(child, f"{path}.condition"))


@dataclass(frozen=True)
class Custom(Condition):
    """Named extension point; False when no registry is configured."""

    type: ClassVar[str] = "custom"

    name: str
    args: Mapping[str, Any] = field(default_factory=dict)

    def evaluate(self, view: FlatView, registry: CustomConditionRegistry | None = None) -> bool:
        if registry is None:
            return False
        return registry.resolve(self.name, self.args, view)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "name": self.name, "args": dict(self.args)}

    @classmethod
    def _parse(cls, data: Mapping[str, Any], path: str) -> Condition:
        args = data.get("args") or {}
        if not isinstance(args, Mapping):
            raise PolicyValidationError("args must be an object", f"{path}.args")
        return cls(name=_require_str(data, "name", path), args=dict(args))


CONDITION_TYPES: dict[str, type[Condition]] = {
    node.type: node
    for node in (
        FieldEquals,
        FieldNotEquals,
        FieldContains,
        FieldMatches,
        FieldGreaterThan,
        FieldLessThan,
        FieldExists,
        FieldNotExists,
        FieldIn,
        FieldNotIn,
        TagMissing,
        TagEquals,
        ResourceTypeIs,
        ProviderIs,
        RegionIs,
        And,
        Or,
        Not,
        Custom,
    )
}


# -- Evaluator -----------------------------------------------------------------


class Polarity(Enum):
    """How a condition result maps to a violation.

    - VIOLATE_IF_TRUE: trigger mode, the condition describes the bad state
    - PASS_IF_TRUE: assertion mode, the condition describes the required state
    """

    VIOLATE_IF_TRUE = "violate_if_true"
    PASS_IF_TRUE = "pass_if_true"


class ConditionEvaluator:
    """Evaluates condition trees for both rules and controls."""

    def __init__(self, registry: CustomConditionRegistry | None = None) -> None:
        self.registry = registry

    def evaluate(
        self,
        condition: Condition | Mapping[str, Any],
        subject: FlatView | EvaluationInput | Resource,
    ) -> bool:
        """Evaluate ``condition``; accepts a prebuilt view, an input or a resource."""
        view = subject if isinstance(subject, FlatView) else flatten_input(subject)
        return Condition.from_dict(condition).evaluate(view, self.registry)

    def is_violation(
        self,
        condition: Condition | Mapping[str, Any],
        subject: FlatView | EvaluationInput | Resource,
        polarity: Polarity,
    ) -> bool:
        """Whether the subject violates ``condition`` under ``polarity``."""
        result = self.evaluate(condition, subject)
        if polarity is Polarity.VIOLATE_IF_TRUE:
            return result
        return not result
