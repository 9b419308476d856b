"""Built-in control frameworks and the framework registry.

Controls are declared with the same condition language policies use, so
a custom framework can be written in YAML and loaded with
``FrameworkRegistry.load_yaml``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from complycore.compliance.models import Control, ControlFramework
from complycore.errors import UnknownFrameworkError
from complycore.policy.conditions import (
    And,
    Condition,
    FieldExists,
    FieldIn,
    FieldNotEquals,
    FieldNotIn,
    Not,
    Or,
    TagMissing,
)
from complycore.resources import Resource
from complycore.severity import Severity

logger = logging.getLogger(__name__)


# -- Predicate helpers ---------------------------------------------------------


def meta_true(key: str) -> Condition:
    """Metadata flag set to ``True`` or ``"true"``."""
    return FieldIn(f"resource.metadata.{key}", (True, "true"))


def meta_set(key: str) -> Condition:
    """Metadata key present with a non-null value."""
    path = f"resource.metadata.{key}"
    return And((FieldExists(path), FieldNotEquals(path, None)))


def has_tag(key: str) -> Condition:
    return Not(TagMissing(key))


def any_of(*conditions: Condition) -> Condition:
    return Or(conditions)


def all_of(*conditions: Condition) -> Condition:
    return And(conditions)


def _approved_region(resource: Resource) -> bool:
    """Region must be listed in ``metadata.approved_regions`` when that list exists."""
    approved = resource.metadata.get("approved_regions")
    if not isinstance(approved, list):
        return True
    return resource.region in approved


# -- Reusable control factories ------------------------------------------------


def encryption_at_rest(control_id: str, framework: str) -> Control:
    return Control(
        id=f"{framework}-{control_id}",
        title="Encryption at rest",
        description="Resources must have encryption enabled at rest.",
        category="Data Protection",
        severity=Severity.HIGH,
        applicable_resource_types=frozenset({"storage", "database", "cache", "queue"}),
        predicate=any_of(
            meta_true("encrypted"), meta_true("encryption_enabled"), meta_true("kms_key_id")
        ),
        remediation="Enable encryption at rest using a KMS key or platform-managed encryption.",
    )


def access_logging(control_id: str, framework: str) -> Control:
    return Control(
        id=f"{framework}-{control_id}",
        title="Access logging enabled",
        description="Resources must have access logging enabled for audit purposes.",
        category="Logging & Monitoring",
        severity=Severity.MEDIUM,
        applicable_resource_types=frozenset(
            {"storage", "database", "compute", "load-balancer", "gateway"}
        ),
        predicate=any_of(meta_true("logging_enabled"), meta_true("access_logging")),
        remediation="Enable access logging on the resource.",
    )


def public_access_blocked(control_id: str, framework: str) -> Control:
    return Control(
        id=f"{framework}-{control_id}",
        title="No public access",
        description="Resources must not be publicly accessible unless explicitly required.",
        category="Access Control",
        severity=Severity.CRITICAL,
        applicable_resource_types=frozenset(
            {"storage", "database", "compute", "cache", "queue", "cluster"}
        ),
        predicate=all_of(
            Not(meta_true("public_access")), Not(meta_true("publicly_accessible"))
        ),
        remediation="Disable public access and restrict to private networks.",
    )


def backup_enabled(control_id: str, framework: str) -> Control:
    return Control(
        id=f"{framework}-{control_id}",
        title="Backup enabled",
        description="Critical resources must have automated backups configured.",
        category="Data Protection",
        severity=Severity.HIGH,
        applicable_resource_types=frozenset({"database", "storage", "compute"}),
        predicate=any_of(meta_true("backup_enabled"), meta_set("backup_retention")),
        remediation="Enable automated backups with an appropriate retention policy.",
    )


def tagging_required(control_id: str, framework: str, required_tags: list[str]) -> Control:
    joined = ", ".join(required_tags)
    return Control(
        id=f"{framework}-{control_id}",
        title="Required tags present",
        description=f"Resources must have required tags: {joined}",
        category="Configuration Management",
        severity=Severity.LOW,
        applicable_resource_types=frozenset(
            {
                "compute",
                "storage",
                "database",
                "cache",
                "queue",
                "cluster",
                "function",
                "serverless-function",
                "network",
                "vpc",
                "subnet",
                "load-balancer",
            }
        ),
        predicate=all_of(*(has_tag(t) for t in required_tags)),
        remediation=f"Add missing tags: {joined}",
    )


# -- Frameworks ----------------------------------------------------------------


def soc2() -> ControlFramework:
    """SOC 2 Trust Services Criteria."""
    return ControlFramework(
        id="soc2",
        name="SOC 2 Type II",
        version="2017",
        description=(
            "Trust Services Criteria for security, availability, processing integrity, "
            "confidentiality, and privacy."
        ),
        controls=(
            encryption_at_rest("CC6.1", "soc2"),
            access_logging("CC7.2", "soc2"),
            backup_enabled("A1.2", "soc2"),
            public_access_blocked("CC6.6", "soc2"),
            Control(
                id="soc2-CC6.3",
                title="Change tracking enabled",
                description="Infrastructure changes must be tracked for audit.",
                category="Change Management",
                severity=Severity.MEDIUM,
                applicable_resource_types=frozenset({"compute", "database", "storage", "cluster"}),
                predicate=any_of(meta_true("change_tracking"), meta_true("versioning_enabled")),
                remediation="Enable change tracking or versioning on the resource.",
            ),
            Control(
                id="soc2-CC6.2",
                title="MFA / strong auth",
                description="Identity resources must enforce multi-factor authentication.",
                category="Access Control",
                severity=Severity.CRITICAL,
                applicable_resource_types=frozenset({"identity"}),
                predicate=meta_true("mfa_enabled"),
                remediation="Enable MFA on identity/IAM resources.",
            ),
        ),
    )


def cis() -> ControlFramework:
    """CIS cloud benchmarks."""
    return ControlFramework(
        id="cis",
        name="CIS Benchmarks",
        version="3.0",
        description="Center for Internet Security cloud benchmarks for security best practices.",
        controls=(
            public_access_blocked("2.1.1", "cis"),
            encryption_at_rest("2.1.2", "cis"),
            Control(
                id="cis-1.4",
                title="Key rotation configured",
                description="Encryption keys must be rotated periodically.",
                category="Key Management",
                severity=Severity.MEDIUM,
                applicable_resource_types=frozenset({"secret", "database", "storage"}),
                predicate=any_of(meta_true("key_rotation"), meta_set("rotation_period")),
                remediation="Enable automatic key rotation (90-day or less cycle).",
            ),
            Control(
                id="cis-4.1",
                title="Unused resources removed",
                description=(
                    "Resources with 'stopped' or 'unused' status should be reviewed or terminated."
                ),
                category="Asset Management",
                severity=Severity.LOW,
                applicable_resource_types=frozenset({"compute", "database", "cache", "cluster"}),
                predicate=FieldNotIn("resource.status", ("stopped", "unused")),
                remediation="Terminate or decommission unused resources.",
            ),
            Control(
                id="cis-5.1",
                title="Default VPC not used",
                description="Resources should not use the default VPC.",
                category="Network Security",
                severity=Severity.MEDIUM,
                applicable_resource_types=frozenset({"vpc", "subnet", "compute"}),
                predicate=Not(meta_true("is_default")),
                remediation="Migrate resources from the default VPC to a custom VPC.",
            ),
            access_logging("3.1", "cis"),
        ),
    )


def hipaa() -> ControlFramework:
    """HIPAA technical safeguards."""
    return ControlFramework(
        id="hipaa",
        name="HIPAA",
        version="2013",
        description="Health Insurance Portability and Accountability Act technical safeguards.",
        controls=(
            encryption_at_rest("164.312-a1", "hipaa"),
            Control(
                id="hipaa-164.312-e1",
                title="Encryption in transit",
                description="PHI must be encrypted in transit.",
                category="Data Protection",
                severity=Severity.CRITICAL,
                applicable_resource_types=frozenset(
                    {"database", "storage", "compute", "load-balancer", "gateway", "cache"}
                ),
                predicate=any_of(
                    meta_true("ssl_enabled"),
                    meta_true("tls_enabled"),
                    meta_true("encryption_in_transit"),
                ),
                remediation="Enable TLS/SSL for all data in transit.",
            ),
            access_logging("164.312-b", "hipaa"),
            Control(
                id="hipaa-164.312-d",
                title="Access controls",
                description="Access to PHI must be restricted to authorized personnel.",
                category="Access Control",
                severity=Severity.CRITICAL,
                applicable_resource_types=frozenset({"database", "storage", "compute"}),
                predicate=any_of(meta_true("access_control"), Not(meta_true("public_access"))),
                remediation="Implement role-based access controls for PHI resources.",
            ),
            backup_enabled("164.308-a7", "hipaa"),
        ),
    )


def pci_dss() -> ControlFramework:
    """PCI-DSS requirements."""
    return ControlFramework(
        id="pci-dss",
        name="PCI-DSS",
        version="4.0",
        description="Payment Card Industry Data Security Standard.",
        controls=(
            Control(
                id="pci-1.3",
                title="Network segmentation",
                description="Cardholder data environment must be segmented from other networks.",
                category="Network Security",
                severity=Severity.CRITICAL,
                applicable_resource_types=frozenset(
                    {"vpc", "subnet", "network", "firewall", "security-group"}
                ),
                predicate=any_of(meta_true("segmented"), meta_set("network_policy")),
                remediation="Implement network segmentation for cardholder data environment.",
            ),
            encryption_at_rest("3.4", "pci"),
            Control(
                id="pci-8.3",
                title="MFA for remote access",
                description="Multi-factor authentication required for all remote access.",
                category="Access Control",
                severity=Severity.CRITICAL,
                applicable_resource_types=frozenset({"identity", "gateway", "compute"}),
                predicate=any_of(meta_true("mfa_enabled"), meta_true("mfa_required")),
                remediation="Enable MFA for remote access to cardholder data.",
            ),
            access_logging("10.2", "pci"),
            Control(
                id="pci-6.6",
                title="Web application firewall",
                description="Public-facing web applications must be protected by a WAF.",
                category="Application Security",
                severity=Severity.HIGH,
                applicable_resource_types=frozenset({"load-balancer", "gateway", "cdn"}),
                predicate=meta_true("waf_enabled"),
                remediation="Deploy a Web Application Firewall in front of public-facing apps.",
            ),
        ),
    )


def gdpr() -> ControlFramework:
    """GDPR technical requirements."""
    return ControlFramework(
        id="gdpr",
        name="GDPR",
        version="2018",
        description="EU General Data Protection Regulation technical compliance requirements.",
        controls=(
            Control(
                id="gdpr-art32-a",
                title="Data residency compliance",
                description="Personal data must be stored in approved regions.",
                category="Data Residency",
                severity=Severity.CRITICAL,
                applicable_resource_types=frozenset(
                    {"database", "storage", "compute", "cache", "queue"}
                ),
                predicate=_approved_region,
                remediation="Move data to an approved region per data residency policy.",
            ),
            Control(
                id="gdpr-art30",
                title="Data classification tags",
                description=(
                    "Resources containing personal data must be tagged with data classification."
                ),
                category="Data Governance",
                severity=Severity.HIGH,
                applicable_resource_types=frozenset({"database", "storage", "queue"}),
                predicate=any_of(has_tag("data_classification"), has_tag("data-classification")),
                remediation="Add a data_classification tag (e.g., personal, sensitive, public).",
            ),
            encryption_at_rest("art32-b", "gdpr"),
            Control(
                id="gdpr-art17",
                title="Retention policy defined",
                description=(
                    "Data retention period must be defined for right-to-erasure compliance."
                ),
                category="Data Governance",
                severity=Severity.MEDIUM,
                applicable_resource_types=frozenset({"database", "storage", "queue"}),
                predicate=any_of(meta_set("retention_days"), meta_set("retention_policy")),
                remediation="Define a data retention policy for the resource.",
            ),
        ),
    )


def nist_800_53() -> ControlFramework:
    """NIST 800-53 security and privacy controls."""
    return ControlFramework(
        id="nist-800-53",
        name="NIST 800-53",
        version="Rev. 5",
        description="Security and Privacy Controls for Information Systems and Organizations.",
        controls=(
            public_access_blocked("AC-3", "nist"),
            encryption_at_rest("SC-28", "nist"),
            access_logging("AU-2", "nist"),
            backup_enabled("CP-9", "nist"),
            tagging_required("CM-8", "nist", ["owner", "environment"]),
            Control(
                id="nist-SI-4",
                title="System monitoring",
                description="Systems must have active monitoring.",
                category="Monitoring",
                severity=Severity.MEDIUM,
                applicable_resource_types=frozenset(
                    {"compute", "database", "cluster", "load-balancer"}
                ),
                predicate=any_of(meta_true("monitoring_enabled"), meta_set("monitoring_agent")),
                remediation="Enable system monitoring and alerting.",
            ),
            Control(
                id="nist-IR-4",
                title="Incident response plan",
                description="Critical systems must have an incident response plan.",
                category="Incident Response",
                severity=Severity.HIGH,
                applicable_resource_types=frozenset({"compute", "database", "cluster"}),
                predicate=any_of(meta_true("incident_response_plan"), has_tag("ir-plan")),
                remediation="Document and tag the resource with an incident response plan.",
            ),
        ),
    )


BUILT_IN_FRAMEWORKS = (soc2, cis, hipaa, pci_dss, gdpr, nist_800_53)


class FrameworkRegistry:
    """Frameworks by id; registering an existing id replaces it."""

    def __init__(self, frameworks: list[ControlFramework] | None = None) -> None:
        self._lock = threading.RLock()
        self._frameworks: dict[str, ControlFramework] = {}
        for framework in frameworks or ():
            self._frameworks[framework.id] = framework

    @classmethod
    def with_builtins(cls) -> FrameworkRegistry:
        return cls([factory() for factory in BUILT_IN_FRAMEWORKS])

    def register(self, framework: ControlFramework) -> None:
        with self._lock:
            self._frameworks[framework.id] = framework
        logger.info("Registered framework %s (%d controls)", framework.id, len(framework.controls))

    def load_yaml(self, path: Path) -> ControlFramework:
        """Load a framework from YAML and register it."""
        framework = ControlFramework.from_yaml(path)
        self.register(framework)
        return framework

    def find(self, framework_id: str) -> ControlFramework | None:
        with self._lock:
            return self._frameworks.get(framework_id)

    def get(self, framework_id: str) -> ControlFramework:
        """Get a framework by id.

        Raises:
            UnknownFrameworkError: If no framework has this id.
        """
        framework = self.find(framework_id)
        if framework is None:
            raise UnknownFrameworkError(framework_id)
        return framework

    def list(self) -> list[ControlFramework]:
        with self._lock:
            return list(self._frameworks.values())

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._frameworks)

    def __contains__(self, framework_id: object) -> bool:
        with self._lock:
            return framework_id in self._frameworks


DEFAULT_REGISTRY = FrameworkRegistry.with_builtins()


def get_framework(framework_id: str) -> ControlFramework:
    """Built-in (or registered) framework by id; raises ``UnknownFrameworkError``."""
    return DEFAULT_REGISTRY.get(framework_id)


def find_framework(framework_id: str) -> ControlFramework | None:
    """Like ``get_framework`` but returns None for an unknown id."""
    return DEFAULT_REGISTRY.find(framework_id)


def list_frameworks() -> list[ControlFramework]:
    return DEFAULT_REGISTRY.list()
