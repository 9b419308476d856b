"""Tests for the built-in policy library and input builders."""

from __future__ import annotations

from complycore.policy.engine import PolicyEvaluationEngine
from complycore.policy.inputs import (
    build_access_input,
    build_cost_input,
    build_drift_input,
    build_plan_input,
    build_resource_input,
)
from complycore.policy.library import (
    get_library_by_category,
    get_library_categories,
    get_library_policies,
    get_library_policy,
)
from complycore.policy.models import PolicyType
from complycore.policy.validator import validate_policy
from complycore.resources import Actor, Resource
from complycore.severity import Severity


class TestLibraryCatalog:
    """Test library lookups."""

    def test_catalog_contents(self):
        """Test the library ships the expected templates."""
        ids = [p.id for p in get_library_policies()]
        assert ids == [
            "deny-public-s3",
            "require-encryption",
            "require-tags",
            "deny-untagged",
            "cost-threshold",
            "restrict-instance-types",
            "block-prod-deletes",
            "blast-radius-limit",
        ]

    def test_categories(self):
        """Test categories keep library order."""
        assert get_library_categories() == ["security", "governance", "cost", "operations"]
        assert [p.id for p in get_library_by_category("cost")] == [
            "cost-threshold",
            "restrict-instance-types",
        ]
        assert get_library_by_category("nope") == []

    def test_lookup(self):
        """Test single lookups."""
        assert get_library_policy("require-tags").category == "governance"
        assert get_library_policy("nope") is None

    def test_every_template_validates(self):
        """Test each instantiated template passes validation."""
        for entry in get_library_policies():
            policy = entry.instantiate(policy_id=f"lib-{entry.id}")
            assert validate_policy(policy) == [], entry.id

    def test_instantiate(self):
        """Test instantiation sets id, labels and overrides."""
        policy = get_library_policy("deny-public-s3").instantiate(enabled=False)
        assert policy.id.startswith("policy-")
        assert policy.enabled is False
        assert policy.severity is Severity.CRITICAL
        assert policy.labels == ("library:deny-public-s3", "security")
        assert policy.auto_attach_patterns == ("type:aws_s3_bucket",)

    def test_instances_are_independent(self):
        """Test overrides on one instance do not leak into the template."""
        entry = get_library_policy("require-tags")
        entry.instantiate(policy_id="a", auto_attach_patterns=["provider:aws"])
        assert entry.instantiate(policy_id="b").auto_attach_patterns == ("*",)


class TestLibraryBehaviour:
    """Test library policies against built inputs."""

    def test_require_tags(self):
        """Test missing owner denies and missing team warns."""
        policy = get_library_policy("require-tags").instantiate(policy_id="tags")
        result = PolicyEvaluationEngine().evaluate(
            policy, build_resource_input({"id": "r", "type": "vm", "tags": {"environment": "dev"}})
        )
        assert result.denied
        assert result.denials == ['All resources must have an "owner" tag.']
        assert len(result.warnings) == 1

    def test_deny_untagged(self):
        """Test an empty tag map is denied."""
        policy = get_library_policy("deny-untagged").instantiate(policy_id="untagged")
        engine = PolicyEvaluationEngine()
        assert engine.evaluate(policy, build_resource_input({"id": "r", "type": "vm"})).denied
        tagged = build_resource_input({"id": "r", "type": "vm", "tags": {"a": "b"}})
        assert not engine.evaluate(policy, tagged).denied

    def test_cost_threshold(self):
        """Test the cost template escalates with the delta."""
        policy = get_library_policy("cost-threshold").instantiate(policy_id="cost")
        assert policy.type is PolicyType.COST
        engine = PolicyEvaluationEngine()

        small = engine.evaluate(policy, build_cost_input(1000, 1050))
        assert small.warnings == [] and not small.approval_required

        medium = engine.evaluate(policy, build_cost_input(1000, 1200))
        assert len(medium.warnings) == 1 and not medium.approval_required

        large = engine.evaluate(policy, build_cost_input(1000, 2000))
        assert large.approval_required
        assert large.passed
        assert large.warnings[1].startswith("Approval required: ")

    def test_block_prod_deletes(self):
        """Test production deletes are denied through the plan namespace."""
        policy = get_library_policy("block-prod-deletes").instantiate(policy_id="prod")
        prod = {"id": "db", "type": "database", "tags": {"environment": "production"}}
        engine = PolicyEvaluationEngine()
        assert engine.evaluate(policy, build_plan_input(deletes=1, resource=prod)).denied
        assert not engine.evaluate(policy, build_plan_input(updates=3, resource=prod)).denied
        big_change = engine.evaluate(policy, build_plan_input(updates=11, resource=prod))
        assert big_change.approval_required

    def test_restrict_instance_types(self):
        """Test unapproved instance types warn."""
        policy = get_library_policy("restrict-instance-types").instantiate(policy_id="types")
        engine = PolicyEvaluationEngine()
        approved = build_resource_input(
            {"id": "i", "type": "aws_instance", "metadata": {"instance_type": "t3.micro"}}
        )
        exotic = build_resource_input(
            {"id": "i", "type": "aws_instance", "metadata": {"instance_type": "x2iedn.32xlarge"}}
        )
        assert engine.evaluate(policy, approved).warnings == []
        assert len(engine.evaluate(policy, exotic).warnings) == 1


class TestInputBuilders:
    """Test the EvaluationInput helpers."""

    def test_resource_input(self):
        """Test resource input with environment."""
        built = build_resource_input({"id": "r", "resourceType": "vm"}, environment="prod")
        assert built.resource.type == "vm"
        assert built.environment == "prod"
        assert built.plan is None

    def test_cost_delta(self):
        """Test the delta is derived."""
        assert build_cost_input(10.0, 25.5).cost.delta == 15.5

    def test_drift_metadata(self):
        """Test drift builders annotate a copy of the resource."""
        original = Resource(id="r", type="vm", metadata={"size": 1})
        built = build_drift_input(original, ["size", "image"])
        assert built.resource.metadata == {
            "size": 1,
            "drifted": True,
            "driftFieldCount": 2,
            "driftedFields": ["size", "image"],
        }
        assert original.metadata == {"size": 1}
        assert build_drift_input(original, []).resource.metadata["drifted"] is False

    def test_access_input(self):
        """Test access builders attach actor and operation."""
        built = build_access_input(
            {"id": "alice", "roles": ["admin"]}, {"id": "db", "type": "database"}, "delete"
        )
        assert built.actor == Actor(id="alice", roles=["admin"])
        assert built.resource.metadata["requestedOperation"] == "delete"
