"""Append-only report history for score trends."""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from complycore.compliance.report import ComplianceReport, TrendPoint, to_trend_point
from complycore.errors import StoreError

logger = logging.getLogger(__name__)


class ReportStore(ABC):
    """Storage contract for compliance reports."""

    @abstractmethod
    def _all(self) -> list[ComplianceReport]:
        """Every stored report, in save order."""

    @abstractmethod
    def _append(self, report: ComplianceReport) -> None:
        """Persist one report."""

    def save(self, report: ComplianceReport) -> str:
        """Store a report and return its id."""
        self._append(report)
        logger.info(
            "Saved report %s for %s (score %d)", report.id, report.framework, report.score
        )
        return report.id

    def get(self, report_id: str) -> ComplianceReport | None:
        for report in self._all():
            if report.id == report_id:
                return report
        return None

    def _ordered(self, framework: str | None) -> list[ComplianceReport]:
        """Reports oldest first; ties keep save order."""
        reports = [r for r in self._all() if framework is None or r.framework == framework]
        return sorted(reports, key=lambda r: r.generated_at)

    def list(self, framework: str | None = None, limit: int = 20) -> list[ComplianceReport]:
        """Most recent reports first."""
        return list(reversed(self._ordered(framework)))[:limit]

    def get_trend(self, framework: str, limit: int = 30) -> list[TrendPoint]:
        """The latest ``limit`` reports as trend points, oldest first."""
        reports = self._ordered(framework)
        return [to_trend_point(r) for r in reports[-limit:]] if limit > 0 else []


class InMemoryReportStore(ReportStore):
    """Report store held in a list."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._reports: list[ComplianceReport] = []

    def _all(self) -> list[ComplianceReport]:
        with self._lock:
            return list(self._reports)

    def _append(self, report: ComplianceReport) -> None:
        with self._lock:
            self._reports.append(report)


class JsonlReportStore(ReportStore):
    """Report store appending one JSON document per line.

    The file is read on every query; an undecodable line raises
    ``StoreError``.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _all(self) -> list[ComplianceReport]:
        if not self.path.exists():
            return []
        reports = []
        try:
            with open(self.path, encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        reports.append(ComplianceReport.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                        raise StoreError(
                            f"Corrupt report at line {lineno}: {e}", str(self.path)
                        ) from e
        except StoreError:
            raise
        except OSError as e:
            raise StoreError(f"Cannot read report store: {e}", str(self.path)) from e
        return reports

    def _append(self, report: ComplianceReport) -> None:
        line = json.dumps(report.to_dict(), sort_keys=True)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                raise StoreError(f"Cannot write report store: {e}", str(self.path)) from e
