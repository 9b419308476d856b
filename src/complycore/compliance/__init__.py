"""Control frameworks, assertion-mode evaluation and compliance reports."""

from __future__ import annotations

from complycore.compliance.models import Control, ControlFramework
from complycore.compliance.frameworks import (
    FrameworkRegistry,
    find_framework,
    get_framework,
    list_frameworks,
)
from complycore.compliance.report import (
    ComplianceReport,
    TrendPoint,
    calculate_score,
    compare_reports,
    generate_report,
    score_to_grade,
)
from complycore.compliance.evaluator import (
    ComplianceEvaluator,
    evaluate,
    evaluate_control,
    evaluate_framework,
)

__all__ = [
    "ComplianceEvaluator",
    "ComplianceReport",
    "Control",
    "ControlFramework",
    "FrameworkRegistry",
    "TrendPoint",
    "calculate_score",
    "compare_reports",
    "evaluate",
    "evaluate_control",
    "evaluate_framework",
    "find_framework",
    "generate_report",
    "get_framework",
    "list_frameworks",
    "score_to_grade",
]
