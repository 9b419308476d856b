"""Violation records shared by policy scans and framework scans."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from complycore.severity import Severity


class ViolationStatus(Enum):
    """Whether a violation is outstanding or covered by an active waiver."""

    OPEN = "open"
    WAIVED = "waived"


@dataclass(frozen=True)
class Violation:
    """One failing (policy or framework, rule or control, resource) triple.

    For policy scans ``policy_id``/``policy_name`` name the policy and
    ``rule_id`` the rule; for framework scans they name the framework and
    the control. ``status`` is decided once, when the violation is built.
    """

    policy_id: str
    policy_name: str
    rule_id: str
    description: str
    severity: Severity
    resource_id: str
    resource_type: str
    resource_name: str = ""
    provider: str = ""
    action: str | None = None
    message: str = ""
    status: ViolationStatus = ViolationStatus.OPEN
    category: str = ""
    remediation: str = ""
    title: str = ""

    @property
    def control_id(self) -> str:
        return self.rule_id

    @property
    def is_open(self) -> bool:
        return self.status is ViolationStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "rule_id": self.rule_id,
            "description": self.description,
            "severity": self.severity.value,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "resource_name": self.resource_name,
            "provider": self.provider,
            "action": self.action,
            "message": self.message,
            "status": self.status.value,
            "category": self.category,
            "remediation": self.remediation,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Violation:
        """Create from dictionary."""
        return cls(
            policy_id=data["policy_id"],
            policy_name=data.get("policy_name", ""),
            rule_id=data.get("rule_id", data.get("control_id", "")),
            description=data.get("description", ""),
            severity=Severity.from_string(data["severity"]),
            resource_id=data["resource_id"],
            resource_type=data.get("resource_type", ""),
            resource_name=data.get("resource_name", ""),
            provider=data.get("provider", ""),
            action=data.get("action"),
            message=data.get("message", ""),
            status=ViolationStatus(data.get("status", "open")),
            category=data.get("category", ""),
            remediation=data.get("remediation", ""),
            title=data.get("title", ""),
        )


def filter_violations(
    violations: Iterable[Violation],
    status: ViolationStatus | str | None = None,
    severity: Severity | str | None = None,
    resource_type: str | None = None,
) -> list[Violation]:
    """Filter violations; every given criterion must match."""
    wanted_status = ViolationStatus(status) if status is not None else None
    wanted_severity = Severity.from_string(severity) if severity is not None else None
    result = []
    for v in violations:
        if wanted_status is not None and v.status is not wanted_status:
            continue
        if wanted_severity is not None and v.severity is not wanted_severity:
            continue
        if resource_type is not None and v.resource_type != resource_type:
            continue
        result.append(v)
    return result
