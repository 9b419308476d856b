"""Compliance reports, scores and grades."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from fractions import Fraction
from typing import Any

from complycore.determinism import new_id, parse_timestamp, stable_now
from complycore.severity import empty_severity_counts
from complycore.violations import Violation, ViolationStatus

# Grade thresholds, highest first
GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))


def score_to_grade(score: int | float) -> str:
    """Map a 0-100 score to a letter grade."""
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def calculate_score(passed: int, total: int, not_applicable: int = 0) -> int:
    """Percentage of applicable controls that passed, rounded half up.

    Zero applicable controls is a vacuous pass and scores 100.
    """
    applicable = total - not_applicable
    if applicable <= 0:
        return 100
    return math.floor(Fraction(passed * 100, applicable) + Fraction(1, 2))


def empty_category_counts() -> dict[str, int]:
    return {"total": 0, "passed": 0, "failed": 0, "waived": 0, "not_applicable": 0}


@dataclass(frozen=True)
class ComplianceReport:
    """Result of scanning resources against one framework.

    Attributes:
        framework: Framework id
        framework_name: Framework display name
        framework_version: Framework version
        generated_at: When the scan ran
        scope: Free-form description of what was scanned
        score: 0-100 score
        grade: Letter grade for ``score``
        total_controls: Controls in the framework
        passed_controls: Applicable controls with no violations
        failed_controls: Controls with at least one open violation
        waived_controls: Controls whose violations are all waived
        not_applicable: Controls with no applicable resource
        violations: Every violation, open and waived
        by_category: Per-category control counts
        by_severity: Open violations per severity
        id: Report identifier
    """

    framework: str
    framework_name: str
    framework_version: str
    generated_at: datetime
    scope: str
    score: int
    grade: str
    total_controls: int
    passed_controls: int
    failed_controls: int
    waived_controls: int
    not_applicable: int
    violations: tuple[Violation, ...] = ()
    by_category: dict[str, dict[str, int]] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=empty_severity_counts)
    id: str = field(default_factory=lambda: new_id("report"))

    def __post_init__(self):
        object.__setattr__(self, "violations", tuple(self.violations))

    @property
    def open_violations(self) -> list[Violation]:
        return [v for v in self.violations if v.status is ViolationStatus.OPEN]

    @property
    def waived_violations(self) -> list[Violation]:
        return [v for v in self.violations if v.status is ViolationStatus.WAIVED]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "framework": self.framework,
            "framework_name": self.framework_name,
            "framework_version": self.framework_version,
            "generated_at": self.generated_at.isoformat(),
            "scope": self.scope,
            "score": self.score,
            "grade": self.grade,
            "total_controls": self.total_controls,
            "passed_controls": self.passed_controls,
            "failed_controls": self.failed_controls,
            "waived_controls": self.waived_controls,
            "not_applicable": self.not_applicable,
            "violations": [v.to_dict() for v in self.violations],
            "by_category": {k: dict(v) for k, v in self.by_category.items()},
            "by_severity": dict(self.by_severity),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ComplianceReport:
        """Create from dictionary."""
        score = data["score"]
        by_severity = empty_severity_counts()
        by_severity.update(data.get("by_severity") or {})
        return cls(
            id=data.get("id") or new_id("report"),
            framework=data["framework"],
            framework_name=data.get("framework_name", data["framework"]),
            framework_version=data.get("framework_version", ""),
            generated_at=parse_timestamp(data["generated_at"]),
            scope=data.get("scope", "all"),
            score=score,
            grade=data.get("grade") or score_to_grade(score),
            total_controls=data.get("total_controls", 0),
            passed_controls=data.get("passed_controls", 0),
            failed_controls=data.get("failed_controls", 0),
            waived_controls=data.get("waived_controls", 0),
            not_applicable=data.get("not_applicable", 0),
            violations=tuple(Violation.from_dict(v) for v in data.get("violations", [])),
            by_category={k: dict(v) for k, v in (data.get("by_category") or {}).items()},
            by_severity=by_severity,
        )


@dataclass(frozen=True)
class TrendPoint:
    """One report reduced to a point on a score trend."""

    date: datetime
    score: int
    violations: int

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date.isoformat(), "score": self.score, "violations": self.violations}


def generate_report(report: ComplianceReport, scope: str | None = None) -> ComplianceReport:
    """Copy of ``report`` with a new scope label, id and timestamp."""
    return replace(
        report,
        scope=scope if scope is not None else report.scope,
        generated_at=stable_now(),
        id=new_id("report"),
    )


def to_trend_point(report: ComplianceReport) -> TrendPoint:
    return TrendPoint(
        date=report.generated_at,
        score=report.score,
        violations=len(report.open_violations),
    )


def compare_reports(reports: Iterable[ComplianceReport]) -> list[TrendPoint]:
    """Trend over reports, oldest first; equal timestamps keep input order."""
    ordered = sorted(reports, key=lambda r: r.generated_at)
    return [to_trend_point(r) for r in ordered]
