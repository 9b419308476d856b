"""Framework scans (assertion mode).

Each control is checked against every applicable resource. A control with
no applicable resource is not applicable; one with any open violation has
failed; one whose violations are all waived is waived; anything else has
passed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from complycore.compliance.frameworks import DEFAULT_REGISTRY, FrameworkRegistry
from complycore.compliance.models import Control, ControlFramework
from complycore.compliance.report import (
    ComplianceReport,
    calculate_score,
    empty_category_counts,
    score_to_grade,
)
from complycore.determinism import ensure_aware, stable_now
from complycore.policy.conditions import ConditionEvaluator, CustomConditionRegistry
from complycore.resources import FlatView, Resource
from complycore.severity import empty_severity_counts
from complycore.stores.waivers import WaiverSnapshot, WaiverStore
from complycore.violations import Violation, ViolationStatus

logger = logging.getLogger(__name__)


def _as_resources(resources: Iterable[Resource | Mapping[str, Any]]) -> list[Resource]:
    return [r if isinstance(r, Resource) else Resource.from_dict(r) for r in resources]


def _subjects(resources: list[Resource]) -> list[tuple[Resource, FlatView]]:
    """Pair each resource with its flattened view, built once per scan."""
    return [(resource, FlatView.from_resource(resource)) for resource in resources]


def _check_control(
    control: Control,
    subjects: list[tuple[Resource, FlatView]],
    evaluator: ConditionEvaluator,
    waivers: WaiverSnapshot | None,
    framework: ControlFramework | None,
) -> tuple[list[Violation], int]:
    """Violations for one control plus the number of applicable resources."""
    violations: list[Violation] = []
    applicable = 0
    for resource, view in subjects:
        if not control.applies_to(resource):
            continue
        applicable += 1
        if control.is_satisfied(resource, evaluator, view):
            continue
        waived = waivers is not None and waivers.is_waived(control.id, resource.id)
        violations.append(
            Violation(
                policy_id=framework.id if framework else "",
                policy_name=framework.name if framework else "",
                rule_id=control.id,
                description=control.description,
                severity=control.severity,
                resource_id=resource.id,
                resource_type=resource.type,
                resource_name=resource.name,
                provider=resource.provider,
                message=f"{control.title}: {control.description}",
                status=ViolationStatus.WAIVED if waived else ViolationStatus.OPEN,
                category=control.category,
                remediation=control.remediation,
                title=control.title,
            )
        )
    return violations, applicable


def evaluate_control(
    control: Control,
    resources: Iterable[Resource | Mapping[str, Any]],
    waiver_store: WaiverStore | None = None,
    now: datetime | None = None,
    framework: ControlFramework | None = None,
    registry: CustomConditionRegistry | None = None,
) -> list[Violation]:
    """Check one control against resources.

    Resources outside the control's applicable types are skipped. Each
    failing resource yields one violation carrying the control's severity,
    description and remediation.
    """
    waivers = None
    if waiver_store is not None:
        waivers = waiver_store.snapshot(ensure_aware(now) if now is not None else stable_now())
    violations, _ = _check_control(
        control,
        _subjects(_as_resources(resources)),
        ConditionEvaluator(registry),
        waivers,
        framework,
    )
    return violations


class ComplianceEvaluator:
    """Scans resource inventories against control frameworks."""

    def __init__(
        self,
        frameworks: FrameworkRegistry | None = None,
        registry: CustomConditionRegistry | None = None,
    ) -> None:
        self.frameworks = frameworks or DEFAULT_REGISTRY
        self.evaluator = ConditionEvaluator(registry)

    def evaluate(
        self,
        framework: ControlFramework | str,
        resources: Iterable[Resource | Mapping[str, Any]],
        waiver_store: WaiverStore | None = None,
        scope: str = "all",
        now: datetime | None = None,
    ) -> ComplianceReport:
        """Scan resources against a framework (object or id).

        Raises:
            UnknownFrameworkError: If ``framework`` is an id nobody registered.
        """
        if isinstance(framework, str):
            framework = self.frameworks.get(framework)
        moment = ensure_aware(now) if now is not None else stable_now()
        items = _as_resources(resources)
        subjects = _subjects(items)
        waivers = waiver_store.snapshot(moment) if waiver_store is not None else None

        violations: list[Violation] = []
        by_category: dict[str, dict[str, int]] = {
            category: empty_category_counts() for category in framework.categories
        }
        by_severity = empty_severity_counts()
        passed = failed = waived = not_applicable = 0

        for control in framework.controls:
            found, applicable = _check_control(
                control, subjects, self.evaluator, waivers, framework
            )
            violations.extend(found)
            counts = by_category[control.category]
            counts["total"] += 1

            if applicable == 0:
                outcome = "not_applicable"
                not_applicable += 1
            elif any(v.is_open for v in found):
                outcome = "failed"
                failed += 1
            elif found:
                outcome = "waived"
                waived += 1
            else:
                outcome = "passed"
                passed += 1
            counts[outcome] += 1
            logger.debug("Control %s: %s (%d violations)", control.id, outcome, len(found))

            for violation in found:
                if violation.is_open:
                    by_severity[violation.severity.value] += 1

        total = len(framework.controls)
        score = calculate_score(passed, total, not_applicable)
        report = ComplianceReport(
            framework=framework.id,
            framework_name=framework.name,
            framework_version=framework.version,
            generated_at=moment,
            scope=scope,
            score=score,
            grade=score_to_grade(score),
            total_controls=total,
            passed_controls=passed,
            failed_controls=failed,
            waived_controls=waived,
            not_applicable=not_applicable,
            violations=tuple(violations),
            by_category=by_category,
            by_severity=by_severity,
        )
        logger.info(
            "Framework %s scanned over %d resources: score %d (%s), %d failed, %d waived",
            framework.id,
            len(items),
            score,
            report.grade,
            failed,
            waived,
        )
        return report


def evaluate(
    framework: ControlFramework | str,
    resources: Iterable[Resource | Mapping[str, Any]],
    waiver_store: WaiverStore | None = None,
    scope: str = "all",
    now: datetime | None = None,
) -> ComplianceReport:
    """Scan against a built-in or registered framework."""
    return ComplianceEvaluator().evaluate(framework, resources, waiver_store, scope, now)


evaluate_framework = evaluate
