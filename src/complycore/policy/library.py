"""Built-in policy templates covering common cloud governance patterns."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from complycore.determinism import new_id
from complycore.policy.models import Policy

LIBRARY_PATH = Path(__file__).parent / "packs" / "library.yaml"


@dataclass(frozen=True)
class LibraryPolicy:
    """A library listing wrapping a policy template."""

    id: str
    name: str
    description: str
    category: str
    template: dict[str, Any] = field(default_factory=dict)

    def instantiate(self, policy_id: str | None = None, **overrides: Any) -> Policy:
        """Build a ``Policy`` from the template.

        Args:
            policy_id: Id for the new policy (generated when omitted)
            **overrides: Top-level policy fields replacing template values,
                e.g. ``enabled=False`` or ``auto_attach_patterns=["*"]``
        """
        data = copy.deepcopy(self.template)
        data.update(overrides)
        data["id"] = policy_id or new_id("policy")
        data.setdefault("labels", [f"library:{self.id}", self.category])
        return Policy.from_dict(data, f"library.{self.id}")


@lru_cache(maxsize=1)
def _load_library() -> tuple[LibraryPolicy, ...]:
    with open(LIBRARY_PATH, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return tuple(
        LibraryPolicy(
            id=item["id"],
            name=item["name"],
            description=item.get("description", ""),
            category=item["category"],
            template=item["template"],
        )
        for item in data.get("policies", [])
    )


def get_library_policies() -> list[LibraryPolicy]:
    """Get all available library policies."""
    return list(_load_library())


def get_library_policy(policy_id: str) -> LibraryPolicy | None:
    """Get a specific library policy by id."""
    for entry in _load_library():
        if entry.id == policy_id:
            return entry
    return None


def get_library_by_category(category: str) -> list[LibraryPolicy]:
    """Get library policies in one category."""
    return [p for p in _load_library() if p.category == category]


def get_library_categories() -> list[str]:
    """Unique categories in library order."""
    return list(dict.fromkeys(p.category for p in _load_library()))
