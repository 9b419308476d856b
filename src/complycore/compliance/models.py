"""Compliance data models: controls (assertion mode) and frameworks."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from complycore.errors import PolicyValidationError
from complycore.policy.conditions import Condition, ConditionEvaluator, Polarity
from complycore.resources import FlatView, Resource
from complycore.severity import Severity

logger = logging.getLogger(__name__)

ResourcePredicate = Callable[[Resource], bool]


@dataclass(frozen=True)
class Control:
    """A requirement that applicable resources must satisfy.

    The predicate describes the required state: a resource violates the
    control when the predicate is false. Resources whose type is not in
    ``applicable_resource_types`` are not applicable, neither passed nor
    failed.

    Attributes:
        id: Control identifier (e.g. ``soc2-CC6.1``)
        title: Short title
        description: What the control requires
        category: Grouping used in report breakdowns
        severity: Severity of violations
        applicable_resource_types: Resource types the control covers
        predicate: Condition tree, or a callable taking a ``Resource``
        remediation: How to fix a violation
        references: External references (URLs, clause numbers)
    """

    id: str
    title: str
    description: str
    category: str
    severity: Severity
    applicable_resource_types: frozenset[str]
    predicate: Condition | ResourcePredicate
    remediation: str = ""
    references: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(
            self, "applicable_resource_types", frozenset(self.applicable_resource_types)
        )
        object.__setattr__(self, "references", tuple(self.references))

    def applies_to(self, resource: Resource) -> bool:
        """Applicability gate on resource type."""
        return resource.type in self.applicable_resource_types

    def is_satisfied(
        self,
        resource: Resource,
        evaluator: ConditionEvaluator | None = None,
        view: FlatView | None = None,
    ) -> bool:
        """Evaluate the predicate for one resource.

        A callable predicate that raises counts as not satisfied.
        """
        if isinstance(self.predicate, Condition):
            evaluator = evaluator or ConditionEvaluator()
            subject = view if view is not None else FlatView.from_resource(resource)
            return not evaluator.is_violation(self.predicate, subject, Polarity.PASS_IF_TRUE)
        try:
            return bool(self.predicate(resource))
        except Exception:
            logger.warning(
                "Predicate of control %s raised for resource %s; treating as violated",
                self.id,
                resource.id,
                exc_info=True,
            )
            return False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (callable predicates serialize as None)."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "severity": self.severity.value,
            "applicable_resource_types": sorted(self.applicable_resource_types),
            "predicate": (
                self.predicate.to_dict() if isinstance(self.predicate, Condition) else None
            ),
            "remediation": self.remediation,
            "references": list(self.references),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], path: str = "control") -> Control:
        """Create from dictionary; the predicate must be a condition."""
        for required in ("id", "title", "category", "predicate"):
            if required not in data:
                raise PolicyValidationError(f"Missing required field: {required}", path)
        try:
            severity = Severity.from_string(data.get("severity", "medium"))
        except ValueError as e:
            raise PolicyValidationError(str(e), f"{path}.severity") from e
        types = data.get("applicable_resource_types", data.get("applicableResourceTypes"))
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            category=data["category"],
            severity=severity,
            applicable_resource_types=frozenset(types or ()),
            predicate=Condition.from_dict(data["predicate"], f"{path}.predicate"),
            remediation=data.get("remediation", ""),
            references=tuple(data.get("references") or ()),
        )


@dataclass(frozen=True)
class ControlFramework:
    """A named, versioned set of controls.

    ``categories`` is derived from the controls, in first-seen order.
    """

    id: str
    name: str
    version: str
    controls: tuple[Control, ...]
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "controls", tuple(self.controls))

    @property
    def categories(self) -> list[str]:
        return list(dict.fromkeys(c.category for c in self.controls))

    def get_control(self, control_id: str) -> Control | None:
        """Get control by ID."""
        for control in self.controls:
            if control.id == control_id:
                return control
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "categories": self.categories,
            "controls": [c.to_dict() for c in self.controls],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ControlFramework:
        """Create from dictionary."""
        for required in ("id", "name"):
            if required not in data:
                raise PolicyValidationError(f"Missing required field: {required}", "framework")
        return cls(
            id=data["id"],
            name=data["name"],
            version=str(data.get("version", "1.0")),
            description=data.get("description", ""),
            controls=tuple(
                Control.from_dict(c, f"controls[{i}]")
                for i, c in enumerate(data.get("controls") or [])
            ),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> ControlFramework:
        """Load a framework from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise PolicyValidationError(f"Invalid framework format in {path}")
        return cls.from_dict(data)
