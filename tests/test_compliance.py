"""Tests for control frameworks, assertion-mode evaluation and reports."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from complycore import evaluate_control, evaluate_framework
from complycore.compliance.evaluator import ComplianceEvaluator
from complycore.compliance.frameworks import (
    FrameworkRegistry,
    encryption_at_rest,
    find_framework,
    get_framework,
    has_tag,
    list_frameworks,
    meta_true,
)
from complycore.compliance.models import Control, ControlFramework
from complycore.compliance.report import (
    ComplianceReport,
    calculate_score,
    compare_reports,
    generate_report,
    score_to_grade,
)
from complycore.determinism import frozen_time
from complycore.errors import UnknownFrameworkError, UnknownReferenceError
from complycore.policy.conditions import ResourceTypeIs
from complycore.policy.engine import PolicyEvaluationEngine
from complycore.policy.models import Policy, Rule
from complycore.resources import FlatView, Resource
from complycore.severity import Severity
from complycore.stores.waivers import InMemoryWaiverStore, create_waiver
from complycore.violations import ViolationStatus, filter_violations

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def mini() -> ControlFramework:
    return ControlFramework(
        id="mini",
        name="Mini",
        version="1",
        controls=(
            encryption_at_rest("enc", "mini"),
            Control(
                id="mini-owner",
                title="Owner tag",
                description="Compute must carry an owner tag.",
                category="Configuration",
                severity=Severity.LOW,
                applicable_resource_types=frozenset({"compute"}),
                predicate=has_tag("owner"),
            ),
            Control(
                id="mini-mfa",
                title="MFA",
                description="Identities must use MFA.",
                category="Identity",
                severity=Severity.CRITICAL,
                applicable_resource_types=frozenset({"identity"}),
                predicate=meta_true("mfa_enabled"),
            ),
        ),
    )


@pytest.fixture
def inventory() -> list[Resource]:
    return [
        Resource(id="db1", type="database", metadata={"encrypted": True}),
        Resource(id="db2", type="database", name="orders", metadata={"encrypted": False}),
        Resource(id="vm", type="compute", tags={"owner": "platform"}),
    ]


class TestScoring:
    """Test score and grade arithmetic."""

    @pytest.mark.parametrize(
        "score,grade",
        [(100, "A"), (90, "A"), (89, "B"), (80, "B"), (79, "C"), (70, "C"),
         (69, "D"), (60, "D"), (59, "F"), (0, "F")],
    )
    def test_grade_boundaries(self, score, grade):
        """Test exact grade thresholds."""
        assert score_to_grade(score) == grade

    def test_vacuous_score(self):
        """Test zero applicable controls scores 100."""
        assert calculate_score(0, 0) == 100
        assert calculate_score(0, 5, not_applicable=5) == 100

    def test_half_up_rounding(self):
        """Test rounding of fractional percentages."""
        assert calculate_score(1, 8) == 13
        assert calculate_score(2, 3) == 67
        assert calculate_score(1, 3) == 33
        assert calculate_score(7, 8) == 88


class TestEvaluateControl:
    """Test single-control assertion mode."""

    def test_encryption_scenario(self):
        """Test unencrypted databases violate and dns records are skipped."""
        control = encryption_at_rest("CC6.1", "soc2")
        violations = evaluate_control(
            control, [{"id": "d", "type": "database", "metadata": {"encrypted": False}}]
        )
        assert len(violations) == 1
        assert violations[0].severity is control.severity
        assert violations[0].remediation == control.remediation
        assert violations[0].control_id == "soc2-CC6.1"
        assert evaluate_control(control, [{"id": "z", "type": "dns"}]) == []

    def test_string_true_satisfies(self):
        """Test metadata flags accept the string form."""
        control = encryption_at_rest("x", "t")
        ok = Resource(id="s", type="storage", metadata={"kms_key_id": "true"})
        assert evaluate_control(control, [ok]) == []

    def test_callable_predicate(self):
        """Test the data residency control uses resource regions."""
        residency = get_framework("gdpr").get_control("gdpr-art32-a")
        inside = Resource(
            id="a", type="database", region="eu-west-1",
            metadata={"approved_regions": ["eu-west-1"]},
        )
        outside = Resource(
            id="b", type="database", region="us-east-1",
            metadata={"approved_regions": ["eu-west-1"]},
        )
        unrestricted = Resource(id="c", type="database", region="us-east-1")
        violations = evaluate_control(residency, [inside, outside, unrestricted])
        assert [v.resource_id for v in violations] == ["b"]

    def test_raising_predicate_is_violation(self, caplog):
        """Test a predicate that raises is logged and counted as violated."""
        control = Control(
            id="boom",
            title="Boom",
            description="",
            category="Test",
            severity=Severity.INFO,
            applicable_resource_types=frozenset({"compute"}),
            predicate=lambda resource: resource.metadata["absent"],
        )
        with caplog.at_level(logging.WARNING, logger="complycore"):
            violations = evaluate_control(control, [Resource(id="vm", type="compute")])
        assert len(violations) == 1
        assert "treating as violated" in caplog.text


class TestFrameworkScan:
    """Test full framework scans and report aggregates."""

    def test_vacuous_framework(self):
        """Test an empty inventory passes every built-in framework."""
        for framework in list_frameworks():
            report = evaluate_framework(framework.id, [])
            assert report.score == 100
            assert report.grade == "A"
            assert report.not_applicable == report.total_controls

    def test_all_inapplicable(self, mini):
        """Test resources of unrelated types leave every control not applicable."""
        report = evaluate_framework(mini, [Resource(id="z", type="dns")])
        assert report.score == 100
        assert report.not_applicable == 3

    def test_mixed_inventory(self, mini, inventory):
        """Test outcome counts, score and breakdowns."""
        report = evaluate_framework(mini, inventory, now=NOW)
        assert (report.passed_controls, report.failed_controls) == (1, 1)
        assert (report.waived_controls, report.not_applicable) == (0, 1)
        assert report.score == 50
        assert report.grade == "F"
        assert report.generated_at == NOW
        assert [v.resource_id for v in report.violations] == ["db2"]
        assert report.violations[0].policy_id == "mini"
        assert report.violations[0].message.startswith("Encryption at rest: ")
        assert report.by_severity["high"] == 1
        assert report.by_category["Data Protection"]["failed"] == 1
        assert report.by_category["Configuration"]["passed"] == 1
        assert report.by_category["Identity"]["not_applicable"] == 1

    def test_waived_control(self, mini, inventory):
        """Test a waived violation is kept but excluded from open counts."""
        store = InMemoryWaiverStore()
        with frozen_time(NOW):
            store.add(create_waiver("mini-enc", "db2", "migration in flight", "bob", 30))
        report = evaluate_framework(mini, inventory, waiver_store=store, now=NOW)
        assert report.waived_controls == 1
        assert report.failed_controls == 0
        assert report.passed_controls == 1
        assert report.score == 50
        assert report.by_severity["high"] == 0
        assert [v.status for v in report.violations] == [ViolationStatus.WAIVED]
        assert report.open_violations == []

    def test_waiver_expiry_reopens(self, mini, inventory):
        """Test a scan after expiry produces an open violation."""
        store = InMemoryWaiverStore()
        with frozen_time(NOW):
            store.add(create_waiver("mini-enc", "db2", "short", "bob", 1))
        later = evaluate_framework(mini, inventory, store, now=NOW + timedelta(days=2))
        assert later.failed_controls == 1
        assert later.violations[0].is_open

    def test_unknown_framework(self):
        """Test unknown framework ids raise a lookup error."""
        with pytest.raises(UnknownFrameworkError) as exc_info:
            evaluate_framework("iso-27001", [])
        assert isinstance(exc_info.value, UnknownReferenceError)
        assert isinstance(exc_info.value, LookupError)
        assert str(exc_info.value) == "Unknown framework: iso-27001"

    def test_soc2_scan(self):
        """Test a realistic SOC 2 scan."""
        resources = [
            Resource(
                id="bucket",
                type="storage",
                metadata={
                    "encrypted": True,
                    "logging_enabled": True,
                    "backup_enabled": True,
                    "versioning_enabled": True,
                },
            ),
            Resource(id="db", type="database", metadata={"publicly_accessible": True}),
        ]
        report = evaluate_framework("soc2", resources, scope="prod")
        failed_ids = {v.control_id for v in report.open_violations}
        assert failed_ids == {"soc2-CC6.1", "soc2-CC7.2", "soc2-A1.2", "soc2-CC6.6", "soc2-CC6.3"}
        assert report.not_applicable == 1
        assert report.scope == "prod"
        assert report.score == 0

    def test_flattens_each_resource_once(self, mini, inventory, monkeypatch):
        """Test every control reuses one flattened view per resource."""
        calls = []
        original = FlatView.from_input.__func__

        def counting(cls, evaluation_input):
            calls.append(evaluation_input.resource.id)
            return original(cls, evaluation_input)

        monkeypatch.setattr(FlatView, "from_input", classmethod(counting))
        ComplianceEvaluator().evaluate(mini, inventory, now=NOW)
        assert sorted(calls) == ["db1", "db2", "vm"]


class TestDuality:
    """Test trigger and assertion modes on the same resource."""

    def test_opposite_polarities(self):
        """Test control violation and policy denial for an unencrypted store."""
        resource = Resource(id="s1", type="storage", metadata={"encrypted": False})
        control = Control(
            id="enc",
            title="Encrypted",
            description="Storage must be encrypted.",
            category="Data",
            severity=Severity.HIGH,
            applicable_resource_types=frozenset({"storage"}),
            predicate=meta_true("encrypted"),
        )
        policy = Policy(
            id="no-storage",
            name="No storage",
            rules=(Rule(id="r", description="", condition=ResourceTypeIs("storage")),),
        )
        assert len(evaluate_control(control, [resource])) == 1
        assert PolicyEvaluationEngine().evaluate(policy, resource).denied is True


class TestRegistry:
    """Test framework lookup and registration."""

    def test_builtins(self):
        """Test the built-in framework catalog."""
        ids = {f.id for f in list_frameworks()}
        assert ids == {"soc2", "cis", "hipaa", "pci-dss", "gdpr", "nist-800-53"}
        assert len(get_framework("soc2").controls) == 6
        assert find_framework("nope") is None

    def test_categories_order(self):
        """Test categories are derived in first-seen order."""
        assert get_framework("soc2").categories == [
            "Data Protection",
            "Logging & Monitoring",
            "Access Control",
            "Change Management",
        ]

    def test_load_yaml(self, tmp_path):
        """Test loading a custom framework from YAML."""
        path = tmp_path / "internal.yaml"
        path.write_text(
            "id: internal\n"
            "name: Internal baseline\n"
            "version: 2\n"
            "controls:\n"
            "  - id: internal-owner\n"
            "    title: Owner tag\n"
            "    category: Tagging\n"
            "    severity: low\n"
            "    applicableResourceTypes: [compute]\n"
            "    predicate: {type: not, condition: {type: tag_missing, tag: owner}}\n"
        )
        registry = FrameworkRegistry()
        framework = registry.load_yaml(path)
        assert "internal" in registry
        assert framework.version == "2"
        report = ComplianceEvaluator(frameworks=registry).evaluate(
            "internal", [Resource(id="vm", type="compute")]
        )
        assert report.failed_controls == 1
        assert report.score == 0

    def test_register_replaces(self, mini):
        """Test registering an existing id replaces it."""
        registry = FrameworkRegistry([mini])
        registry.register(ControlFramework(id="mini", name="Mini 2", version="2", controls=()))
        assert registry.get("mini").name == "Mini 2"
        assert registry.ids() == ["mini"]


class TestReports:
    """Test report serialization and trends."""

    def test_round_trip(self, mini, inventory):
        """Test reports survive to_dict/from_dict."""
        report = evaluate_framework(mini, inventory, now=NOW)
        assert ComplianceReport.from_dict(report.to_dict()) == report

    def test_generate_report(self, mini, inventory):
        """Test regenerating assigns a new id and timestamp."""
        report = evaluate_framework(mini, inventory, now=NOW)
        with frozen_time(NOW + timedelta(hours=1)):
            copy = generate_report(report, scope="nightly")
        assert copy.id != report.id
        assert copy.scope == "nightly"
        assert copy.generated_at == NOW + timedelta(hours=1)
        assert copy.score == report.score

    def test_compare_reports(self, mini, inventory):
        """Test trends are ordered oldest first."""
        later = evaluate_framework(mini, inventory, now=NOW + timedelta(days=1))
        earlier = evaluate_framework(mini, inventory[:1], now=NOW)
        trend = compare_reports([later, earlier])
        assert [p.date for p in trend] == [NOW, NOW + timedelta(days=1)]
        assert [p.violations for p in trend] == [0, 1]
        assert trend[0].to_dict()["score"] == 100

    def test_filter_violations(self, mini, inventory):
        """Test violation filters."""
        extra = Resource(id="vm2", type="compute")
        report = evaluate_framework(mini, [*inventory, extra], now=NOW)
        assert len(report.violations) == 2
        assert [v.resource_id for v in filter_violations(report.violations, severity="low")] == [
            "vm2"
        ]
        assert len(filter_violations(report.violations, resource_type="database")) == 1
        assert filter_violations(report.violations, status="waived") == []
