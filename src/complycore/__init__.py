"""Governance engine for infrastructure resources.

This package evaluates resources against:
- Policies: trigger-mode rules that allow, deny, warn or require approval
- Control frameworks: assertion-mode controls scored into a compliance grade

Waivers suppress individual violations for a bounded time without
removing them from the record.
"""

from __future__ import annotations

from complycore.compliance.evaluator import evaluate_control, evaluate_framework
from complycore.policy.engine import evaluate, evaluate_all, scan_resources

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "evaluate",
    "evaluate_all",
    "evaluate_control",
    "evaluate_framework",
    "scan_resources",
]
