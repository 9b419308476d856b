"""JSON Schema validation for policy documents.

Policies are validated at the storage boundary: a policy that passes here
is safe to evaluate, so evaluation itself never has to reject anything.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from complycore.errors import PolicyValidationError
from complycore.policy.conditions import CONDITION_TYPES, Condition
from complycore.policy.models import Policy, PolicyType, RuleAction
from complycore.policy.scope import validate_pattern
from complycore.severity import Severity

# JSON Schema for a condition node; per-type fields are checked when the
# node is built.
CONDITION_SCHEMA = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "enum": sorted(CONDITION_TYPES)},
        "field": {"type": "string", "minLength": 1},
        "pattern": {"type": "string"},
        "flags": {"type": "string", "pattern": "^[ims]*$"},
        "values": {"type": "array"},
        "tag": {"type": "string", "minLength": 1},
        "resource_type": {"type": "string", "minLength": 1},
        "resourceType": {"type": "string", "minLength": 1},
        "provider": {"type": "string", "minLength": 1},
        "region": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "args": {"type": "object"},
        "conditions": {"type": "array", "items": {"$ref": "#/definitions/condition"}},
        "condition": {"$ref": "#/definitions/condition"},
    },
}

# JSON Schema for policy rules
RULE_SCHEMA = {
    "type": "object",
    "required": ["id", "condition"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "condition": {"$ref": "#/definitions/condition"},
        "action": {"type": "string", "enum": [a.value for a in RuleAction]},
        "message": {"type": "string"},
    },
}

# JSON Schema for policies
POLICY_SCHEMA = {
    "type": "object",
    "required": ["id", "name", "rules"],
    "definitions": {"condition": CONDITION_SCHEMA},
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "type": {"type": "string", "enum": [t.value for t in PolicyType]},
        "enabled": {"type": "boolean"},
        "severity": {"type": "string", "enum": [s.value for s in Severity]},
        "labels": {"type": "array", "items": {"type": "string"}},
        "auto_attach_patterns": {"type": "array", "items": {"type": "string"}},
        "rules": {"type": "array", "items": RULE_SCHEMA},
        "created_at": {"type": "string"},
        "updated_at": {"type": "string"},
    },
}

_VALIDATOR = jsonschema.Draft7Validator(POLICY_SCHEMA)


def _format_path(parts: Iterable[Any]) -> str:
    path = ""
    for part in parts:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = f"{path}.{part}" if path else str(part)
    return path


def _normalize(data: Mapping[str, Any]) -> dict[str, Any]:
    """Accept camelCase keys the wire format also uses."""
    normalized = dict(data)
    if "autoAttachPatterns" in normalized and "auto_attach_patterns" not in normalized:
        normalized["auto_attach_patterns"] = normalized.pop("autoAttachPatterns")
    for camel, snake in (("createdAt", "created_at"), ("updatedAt", "updated_at")):
        if camel in normalized and snake not in normalized:
            normalized[snake] = normalized.pop(camel)
    return normalized


class PolicyValidator:
    """Validator for policy documents."""

    def __init__(self) -> None:
        self.errors: list[PolicyValidationError] = []

    def validate(self, data: Mapping[str, Any] | Policy) -> list[PolicyValidationError]:
        """Validate a policy document (or a built ``Policy``).

        Returns:
            List of validation errors (empty if valid)
        """
        self.errors = []
        if isinstance(data, Policy):
            data = data.to_dict()
        if not isinstance(data, Mapping):
            self.errors.append(
                PolicyValidationError(f"Expected object, got {type(data).__name__}", "")
            )
            return self.errors

        data = _normalize(data)
        schema_errors = sorted(
            _VALIDATOR.iter_errors(data), key=lambda e: _format_path(e.absolute_path)
        )
        for error in schema_errors:
            self.errors.append(
                PolicyValidationError(error.message, _format_path(error.absolute_path))
            )

        self._validate_patterns(data.get("auto_attach_patterns"))
        self._validate_rules(data.get("rules"))
        return self.errors

    def _validate_patterns(self, patterns: Any) -> None:
        if not isinstance(patterns, list):
            return
        for i, pattern in enumerate(patterns):
            try:
                validate_pattern(pattern, f"auto_attach_patterns[{i}]")
            except PolicyValidationError as e:
                self.errors.append(e)

    def _validate_rules(self, rules: Any) -> None:
        """Build each condition so regex and per-type field errors surface."""
        if not isinstance(rules, list):
            return
        seen: set[str] = set()
        for i, rule in enumerate(rules):
            if not isinstance(rule, Mapping):
                continue
            rule_id = rule.get("id")
            if isinstance(rule_id, str):
                if rule_id in seen:
                    self.errors.append(
                        PolicyValidationError(f"Duplicate rule id: {rule_id}", f"rules[{i}].id")
                    )
                seen.add(rule_id)
            condition = rule.get("condition")
            if not isinstance(condition, Mapping):
                continue
            try:
                Condition.from_dict(condition, f"rules[{i}].condition")
            except PolicyValidationError as e:
                if not any(existing.path == e.path for existing in self.errors):
                    self.errors.append(e)

    def validate_file(self, path: Path) -> list[PolicyValidationError]:
        """Validate a policy YAML file."""
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            self.errors = [PolicyValidationError(f"YAML parse error: {e}", str(path))]
            return self.errors
        return self.validate(data)

    def is_valid(self, data: Mapping[str, Any] | Policy) -> bool:
        """Check if a policy document is valid."""
        return not self.validate(data)

    def validate_or_raise(self, data: Mapping[str, Any] | Policy) -> None:
        """Validate and raise the first error if invalid.

        Raises:
            PolicyValidationError: If validation fails
        """
        errors = self.validate(data)
        if errors:
            raise errors[0]


def validate_policy(data: Mapping[str, Any] | Policy) -> list[PolicyValidationError]:
    """Convenience wrapper around ``PolicyValidator.validate``."""
    return PolicyValidator().validate(data)
