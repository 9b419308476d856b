"""Policy storage: validated at save time, read as already-valid policies."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path

import yaml

from complycore.determinism import stable_now
from complycore.errors import PolicyValidationError, StoreError, UnknownPolicyError
from complycore.policy.models import Policy, PolicyType
from complycore.policy.validator import PolicyValidator
from complycore.severity import Severity

logger = logging.getLogger(__name__)


class PolicyStore(ABC):
    """Storage contract for policies."""

    @abstractmethod
    def _all(self) -> list[Policy]:
        """Every stored policy, in insertion order."""

    @abstractmethod
    def _put(self, policy: Policy) -> None:
        """Persist a validated policy."""

    @abstractmethod
    def _drop(self, policy_id: str) -> bool:
        """Delete by id; False if absent."""

    def list(
        self,
        type: PolicyType | str | None = None,
        severity: Severity | str | None = None,
        enabled: bool | None = None,
    ) -> list[Policy]:
        """Policies matching every given filter."""
        wanted_type = PolicyType(type) if type is not None else None
        wanted_severity = Severity.from_string(severity) if severity is not None else None
        return [
            p
            for p in self._all()
            if (wanted_type is None or p.type is wanted_type)
            and (wanted_severity is None or p.severity is wanted_severity)
            and (enabled is None or p.enabled == enabled)
        ]

    def get(self, policy_id: str) -> Policy | None:
        for policy in self._all():
            if policy.id == policy_id:
                return policy
        return None

    def require(self, policy_id: str) -> Policy:
        """Get a policy by id.

        Raises:
            UnknownPolicyError: If no policy has this id.
        """
        policy = self.get(policy_id)
        if policy is None:
            raise UnknownPolicyError(policy_id)
        return policy

    def save(self, policy: Policy) -> Policy:
        """Validate and store a policy; an existing id keeps its ``created_at``.

        Raises:
            PolicyValidationError: If the policy is malformed.
        """
        PolicyValidator().validate_or_raise(policy)
        existing = self.get(policy.id)
        if existing is not None:
            policy = replace(policy, created_at=existing.created_at, updated_at=stable_now())
        self._put(policy)
        logger.info("%s policy %s", "Updated" if existing else "Saved", policy.id)
        return policy

    def delete(self, policy_id: str) -> bool:
        removed = self._drop(policy_id)
        if removed:
            logger.info("Deleted policy %s", policy_id)
        return removed


class InMemoryPolicyStore(PolicyStore):
    """Policy store held in a dictionary."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._policies: dict[str, Policy] = {}

    def _all(self) -> list[Policy]:
        with self._lock:
            return list(self._policies.values())

    def _put(self, policy: Policy) -> None:
        with self._lock:
            self._policies[policy.id] = policy

    def _drop(self, policy_id: str) -> bool:
        with self._lock:
            return self._policies.pop(policy_id, None) is not None


class YamlDirectoryPolicyStore(PolicyStore):
    """One ``<id>.yaml`` file per policy in a directory.

    Files are read on every query, so edits made outside the store are
    picked up. A file that does not parse or validate raises ``StoreError``.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._lock = threading.RLock()

    def _path(self, policy_id: str) -> Path:
        if not policy_id or "/" in policy_id or "\\" in policy_id or policy_id in (".", ".."):
            raise PolicyValidationError(f"Policy id not usable as a file name: {policy_id!r}", "id")
        return self.directory / f"{policy_id}.yaml"

    def _all(self) -> list[Policy]:
        if not self.directory.exists():
            return []
        policies = []
        for path in sorted(self.directory.glob("*.yaml")):
            try:
                policies.append(Policy.from_yaml(path))
            except (OSError, yaml.YAMLError, PolicyValidationError) as e:
                raise StoreError(f"Cannot load policy: {e}", str(path)) from e
        return policies

    def _put(self, policy: Policy) -> None:
        path = self._path(policy.id)
        with self._lock:
            try:
                policy.write_yaml(path)
            except OSError as e:
                raise StoreError(f"Cannot write policy: {e}", str(path)) from e

    def _drop(self, policy_id: str) -> bool:
        path = self._path(policy_id)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StoreError(f"Cannot delete policy: {e}", str(path)) from e
        return True
