"""Policy evaluation engine (trigger mode).

Three entry points share one interpreter:
- ``evaluate``: one policy against one input
- ``evaluate_all``: many policies against one input, deny wins
- ``scan_resources``: many policies against many resources, flat violations
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from complycore.config import EngineConfig
from complycore.determinism import ensure_aware, stable_now
from complycore.policy.conditions import ConditionEvaluator, CustomConditionRegistry, Polarity
from complycore.policy.models import Policy, RuleAction
from complycore.policy.scope import ScopeMatcher
from complycore.resources import EvaluationInput, FlatView, Resource
from complycore.stores.waivers import WaiverSnapshot, WaiverStore
from complycore.violations import Violation, ViolationStatus

logger = logging.getLogger(__name__)

APPROVAL_PREFIX = "Approval required: "


@dataclass(frozen=True)
class RuleResult:
    """Outcome of one rule; ``fired`` means the condition held."""

    rule_id: str
    description: str
    fired: bool
    action: RuleAction
    message: str

    @property
    def passed(self) -> bool:
        return not self.fired

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rule_id": self.rule_id,
            "description": self.description,
            "fired": self.fired,
            "passed": self.passed,
            "action": self.action.value,
            "message": self.message,
        }


@dataclass
class PolicyResult:
    """Result of evaluating one policy against one input."""

    policy_id: str
    policy_name: str
    passed: bool = True
    rule_results: list[RuleResult] = field(default_factory=list)
    denials: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    notifications: list[str] = field(default_factory=list)
    approval_required: bool = False
    evaluated_at: datetime = field(default_factory=stable_now)
    duration_ms: float = 0.0

    @property
    def denied(self) -> bool:
        return not self.passed

    @property
    def fired_rules(self) -> list[RuleResult]:
        return [r for r in self.rule_results if r.fired]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "passed": self.passed,
            "denied": self.denied,
            "rule_results": [r.to_dict() for r in self.rule_results],
            "denials": list(self.denials),
            "warnings": list(self.warnings),
            "notifications": list(self.notifications),
            "approval_required": self.approval_required,
            "evaluated_at": self.evaluated_at.isoformat(),
            "duration_ms": self.duration_ms,
        }


@dataclass
class AggregateResult:
    """Combined decision over several policies."""

    allowed: bool = True
    denials: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    notifications: list[str] = field(default_factory=list)
    approval_required: bool = False
    results: list[PolicyResult] = field(default_factory=list)
    evaluated_at: datetime = field(default_factory=stable_now)
    total_duration_ms: float = 0.0

    @property
    def denied(self) -> bool:
        return not self.allowed

    @property
    def total_policies(self) -> int:
        return len(self.results)

    @property
    def passed_policies(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_policies(self) -> int:
        return sum(1 for r in self.results if r.denied)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "allowed": self.allowed,
            "denied": self.denied,
            "denials": list(self.denials),
            "warnings": list(self.warnings),
            "notifications": list(self.notifications),
            "approval_required": self.approval_required,
            "results": [r.to_dict() for r in self.results],
            "total_policies": self.total_policies,
            "passed_policies": self.passed_policies,
            "failed_policies": self.failed_policies,
            "evaluated_at": self.evaluated_at.isoformat(),
            "total_duration_ms": self.total_duration_ms,
        }


def _as_input(subject: EvaluationInput | Resource | Mapping[str, Any]) -> EvaluationInput:
    if isinstance(subject, EvaluationInput):
        return subject
    if isinstance(subject, Resource):
        return EvaluationInput(resource=subject)
    return EvaluationInput.from_dict(subject)


def _as_resource(item: Resource | Mapping[str, Any]) -> Resource:
    return item if isinstance(item, Resource) else Resource.from_dict(item)


class PolicyEvaluationEngine:
    """Evaluates policies in trigger mode.

    The engine holds no per-call state and can be shared between threads.
    """

    def __init__(
        self,
        registry: CustomConditionRegistry | None = None,
        max_workers: int = 1,
        scope_matcher: ScopeMatcher | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.evaluator = ConditionEvaluator(registry)
        self.max_workers = max_workers
        self.scope = scope_matcher or ScopeMatcher()

    @classmethod
    def from_config(
        cls,
        config: EngineConfig | None = None,
        registry: CustomConditionRegistry | None = None,
    ) -> PolicyEvaluationEngine:
        """Create an engine sized by ``config.max_workers``."""
        config = config or EngineConfig()
        return cls(registry=registry, max_workers=config.max_workers)

    def evaluate(
        self,
        policy: Policy,
        evaluation_input: EvaluationInput | Resource | Mapping[str, Any],
    ) -> PolicyResult:
        """Evaluate one policy; every rule runs, with no short-circuit on deny."""
        return self._evaluate_view(policy, FlatView.from_input(_as_input(evaluation_input)))

    def _evaluate_view(self, policy: Policy, view: FlatView) -> PolicyResult:
        start = time.perf_counter()
        result = PolicyResult(policy_id=policy.id, policy_name=policy.name)
        if not policy.enabled:
            logger.debug("Policy %s is disabled; skipping", policy.id)
            return result

        self._run_rules(policy, view, result)
        result.duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            "Evaluated policy %s: %d/%d rules fired, passed=%s",
            policy.id,
            len(result.fired_rules),
            len(result.rule_results),
            result.passed,
        )
        return result

    def _run_rules(self, policy: Policy, view: FlatView, result: PolicyResult) -> None:
        for rule in policy.rules:
            fired = self.evaluator.is_violation(rule.condition, view, Polarity.VIOLATE_IF_TRUE)
            result.rule_results.append(
                RuleResult(
                    rule_id=rule.id,
                    description=rule.description,
                    fired=fired,
                    action=rule.action,
                    message=rule.message,
                )
            )
            if not fired:
                continue
            logger.debug("Rule %s/%s fired (%s)", policy.id, rule.id, rule.action.value)
            if rule.action is RuleAction.DENY:
                result.denials.append(rule.message)
                result.passed = False
            elif rule.action is RuleAction.WARN:
                result.warnings.append(rule.message)
            elif rule.action is RuleAction.REQUIRE_APPROVAL:
                result.approval_required = True
                result.warnings.append(f"{APPROVAL_PREFIX}{rule.message}")
            elif rule.action is RuleAction.NOTIFY:
                result.notifications.append(rule.message)

    def evaluate_all(
        self,
        policies: Iterable[Policy],
        evaluation_input: EvaluationInput | Resource | Mapping[str, Any],
    ) -> AggregateResult:
        """Evaluate every enabled policy and combine with deny-wins.

        Disabled policies are left out of the result entirely.
        """
        start = time.perf_counter()
        view = FlatView.from_input(_as_input(evaluation_input))
        aggregate = AggregateResult()
        for policy in policies:
            if not policy.enabled:
                continue
            result = self._evaluate_view(policy, view)
            aggregate.results.append(result)
            aggregate.denials.extend(result.denials)
            aggregate.warnings.extend(result.warnings)
            aggregate.notifications.extend(result.notifications)
            if result.approval_required:
                aggregate.approval_required = True
            if result.denied:
                aggregate.allowed = False
        aggregate.total_duration_ms = (time.perf_counter() - start) * 1000
        return aggregate

    def scan_resources(
        self,
        policies: Iterable[Policy],
        resources: Iterable[Resource | Mapping[str, Any]],
        waiver_store: WaiverStore | None = None,
        now: datetime | None = None,
    ) -> list[Violation]:
        """Scan resources against in-scope enabled policies.

        Returns one violation per fired rule, ordered by resource, then
        policy, then rule, whatever ``max_workers`` is.
        """
        active = [p for p in policies if p.enabled]
        items = [_as_resource(r) for r in resources]
        moment = ensure_aware(now) if now is not None else stable_now()
        waivers = waiver_store.snapshot(moment) if waiver_store is not None else None

        def scan_one(resource: Resource) -> list[Violation]:
            return self._scan_resource(active, resource, waivers)

        if self.max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                per_resource = list(pool.map(scan_one, items))
        else:
            per_resource = [scan_one(r) for r in items]

        violations = [v for batch in per_resource for v in batch]
        logger.info(
            "Scanned %d resources against %d policies: %d violations",
            len(items),
            len(active),
            len(violations),
        )
        return violations

    def _scan_resource(
        self,
        policies: list[Policy],
        resource: Resource,
        waivers: WaiverSnapshot | None,
    ) -> list[Violation]:
        view = FlatView.from_resource(resource)
        violations: list[Violation] = []
        for policy in policies:
            if not self.scope.applies(policy, resource):
                continue
            result = PolicyResult(policy_id=policy.id, policy_name=policy.name)
            self._run_rules(policy, view, result)
            waived = waivers is not None and waivers.is_waived(policy.id, resource.id)
            status = ViolationStatus.WAIVED if waived else ViolationStatus.OPEN
            for rule_result in result.fired_rules:
                violations.append(
                    Violation(
                        policy_id=policy.id,
                        policy_name=policy.name,
                        rule_id=rule_result.rule_id,
                        description=rule_result.description,
                        severity=policy.severity,
                        resource_id=resource.id,
                        resource_type=resource.type,
                        resource_name=resource.name,
                        provider=resource.provider,
                        action=rule_result.action.value,
                        message=rule_result.message,
                        status=status,
                        category=policy.type.value,
                    )
                )
        return violations


_DEFAULT_ENGINE = PolicyEvaluationEngine()


def evaluate(
    policy: Policy,
    evaluation_input: EvaluationInput | Resource | Mapping[str, Any],
) -> PolicyResult:
    """Evaluate one policy with a default engine."""
    return _DEFAULT_ENGINE.evaluate(policy, evaluation_input)


def evaluate_all(
    policies: Iterable[Policy],
    evaluation_input: EvaluationInput | Resource | Mapping[str, Any],
) -> AggregateResult:
    """Evaluate several policies with a default engine."""
    return _DEFAULT_ENGINE.evaluate_all(policies, evaluation_input)


def scan_resources(
    policies: Iterable[Policy],
    resources: Iterable[Resource | Mapping[str, Any]],
    waiver_store: WaiverStore | None = None,
    now: datetime | None = None,
) -> list[Violation]:
    """Scan resources with a default serial engine."""
    return _DEFAULT_ENGINE.scan_resources(policies, resources, waiver_store, now)
