"""Policy data models: rules in trigger mode and the policies that own them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from complycore.determinism import new_id, parse_timestamp, stable_now
from complycore.errors import PolicyValidationError
from complycore.policy.conditions import Condition
from complycore.severity import Severity


class RuleAction(Enum):
    """What a fired rule contributes to the decision."""

    DENY = "deny"
    WARN = "warn"
    REQUIRE_APPROVAL = "require_approval"
    NOTIFY = "notify"


class PolicyType(Enum):
    """Kind of operation a policy governs."""

    PLAN = "plan"
    ACCESS = "access"
    APPROVAL = "approval"
    NOTIFICATION = "notification"
    DRIFT = "drift"
    COST = "cost"
    DEPLOYMENT = "deployment"
    CUSTOM = "custom"


def _parse_enum(enum_cls: type[Enum], value: Any, path: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [m.value for m in enum_cls]
        raise PolicyValidationError(
            f"Invalid {path.rsplit('.', 1)[-1]}: {value!r}. Must be one of: {allowed}", path
        ) from None


def _parse_severity(value: Any, path: str) -> Severity:
    try:
        return Severity.from_string(value)
    except ValueError:
        allowed = [s.value for s in Severity]
        raise PolicyValidationError(
            f"Invalid severity: {value!r}. Must be one of: {allowed}", path
        ) from None


@dataclass(frozen=True)
class Rule:
    """A single trigger-mode rule.

    The condition describes the bad state: when it evaluates true the rule
    fires and contributes ``action`` and ``message`` to the result.

    Attributes:
        id: Rule identifier, unique within its policy
        description: Human-readable description
        condition: Condition tree
        action: Contribution when fired
        message: Message reported when fired
    """

    id: str
    description: str
    condition: Condition
    action: RuleAction = RuleAction.DENY
    message: str = ""

    def __post_init__(self):
        if not self.id:
            raise PolicyValidationError("Rule ID is required", "id")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "description": self.description,
            "condition": self.condition.to_dict(),
            "action": self.action.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], path: str = "rule") -> Rule:
        """Create from dictionary.

        Raises:
            PolicyValidationError: On a missing field, an unknown action or a
                malformed condition.
        """
        if not isinstance(data, Mapping):
            raise PolicyValidationError(f"Expected object, got {type(data).__name__}", path)
        for required in ("id", "condition"):
            if required not in data:
                raise PolicyValidationError(f"Missing required field: {required}", path)
        return cls(
            id=str(data["id"]),
            description=data.get("description", ""),
            condition=Condition.from_dict(data["condition"], f"{path}.condition"),
            action=_parse_enum(RuleAction, data.get("action", "deny"), f"{path}.action"),
            message=data.get("message", ""),
        )


@dataclass(frozen=True)
class Policy:
    """An ordered set of rules plus scoping and metadata.

    Attributes:
        id: Unique policy identifier
        name: Display name
        description: Policy description
        type: Kind of operation governed
        enabled: Disabled policies are skipped by every evaluation path
        severity: Severity assigned to violations of this policy
        labels: Free-form labels
        auto_attach_patterns: Scope patterns; empty applies everywhere
        rules: Rules in evaluation order
        created_at: Creation time
        updated_at: Last modification time
    """

    id: str
    name: str
    description: str = ""
    type: PolicyType = PolicyType.PLAN
    enabled: bool = True
    severity: Severity = Severity.MEDIUM
    labels: tuple[str, ...] = ()
    auto_attach_patterns: tuple[str, ...] = ()
    rules: tuple[Rule, ...] = ()
    created_at: datetime = field(default_factory=stable_now)
    updated_at: datetime = field(default_factory=stable_now)

    def __post_init__(self):
        if not self.id:
            raise PolicyValidationError("Policy ID is required", "id")
        object.__setattr__(self, "labels", tuple(self.labels))
        object.__setattr__(self, "auto_attach_patterns", tuple(self.auto_attach_patterns))
        object.__setattr__(self, "rules", tuple(self.rules))

    def get_rule(self, rule_id: str) -> Rule | None:
        """Get rule by ID."""
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "enabled": self.enabled,
            "severity": self.severity.value,
            "labels": list(self.labels),
            "auto_attach_patterns": list(self.auto_attach_patterns),
            "rules": [r.to_dict() for r in self.rules],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], path: str = "policy") -> Policy:
        """Create from dictionary (``autoAttachPatterns`` etc. accepted)."""
        if not isinstance(data, Mapping):
            raise PolicyValidationError(f"Expected object, got {type(data).__name__}", path)
        for required in ("id", "name"):
            if required not in data:
                raise PolicyValidationError(f"Missing required field: {required}", path)

        rules_data = data.get("rules") or []
        if not isinstance(rules_data, list):
            raise PolicyValidationError("rules must be a list", f"{path}.rules")

        now = stable_now()
        created = data.get("created_at", data.get("createdAt"))
        updated = data.get("updated_at", data.get("updatedAt"))
        return cls(
            id=str(data["id"]),
            name=data["name"],
            description=data.get("description", ""),
            type=_parse_enum(PolicyType, data.get("type", "plan"), f"{path}.type"),
            enabled=data.get("enabled", True),
            severity=_parse_severity(data.get("severity", "medium"), f"{path}.severity"),
            labels=tuple(data.get("labels") or ()),
            auto_attach_patterns=tuple(
                data.get("auto_attach_patterns", data.get("autoAttachPatterns")) or ()
            ),
            rules=tuple(
                Rule.from_dict(r, f"{path}.rules[{i}]") for i, r in enumerate(rules_data)
            ),
            created_at=parse_timestamp(created) if created else now,
            updated_at=parse_timestamp(updated) if updated else now,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> Policy:
        """Load a policy from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise PolicyValidationError(f"Invalid policy format in {path}")
        return cls.from_dict(data)

    def write_yaml(self, path: Path) -> None:
        """Write policy to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False, allow_unicode=True)


def create_policy(
    name: str,
    rules: list[Rule] | list[Mapping[str, Any]] | None = None,
    *,
    description: str = "",
    type: PolicyType | str = PolicyType.PLAN,
    enabled: bool = True,
    severity: Severity | str = Severity.MEDIUM,
    labels: list[str] | None = None,
    auto_attach_patterns: list[str] | None = None,
    policy_id: str | None = None,
) -> Policy:
    """Build a policy with generated id and timestamps.

    Rules may be given as ``Rule`` objects or their dictionary form.
    """
    parsed_rules = tuple(
        r if isinstance(r, Rule) else Rule.from_dict(r, f"rules[{i}]")
        for i, r in enumerate(rules or ())
    )
    now = stable_now()
    return Policy(
        id=policy_id or new_id("policy"),
        name=name,
        description=description,
        type=_parse_enum(PolicyType, type, "type"),
        enabled=enabled,
        severity=_parse_severity(severity, "severity"),
        labels=tuple(labels or ()),
        auto_attach_patterns=tuple(auto_attach_patterns or ()),
        rules=parsed_rules,
        created_at=now,
        updated_at=now,
    )


def load_policies_from_yaml(path: Path) -> list[Policy]:
    """Load one policy or a ``policies:`` list from a YAML file."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict) and "policies" in data:
        items = data["policies"] or []
    elif isinstance(data, dict):
        items = [data]
    elif isinstance(data, list):
        items = data
    else:
        raise PolicyValidationError(f"Invalid policy format in {path}")
    return [Policy.from_dict(item, f"policies[{i}]") for i, item in enumerate(items)]
