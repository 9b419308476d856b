"""Tests for the condition language and the flattened view."""

from __future__ import annotations

import logging

import pytest

from complycore.errors import PolicyValidationError
from complycore.policy.conditions import (
    And,
    Condition,
    ConditionEvaluator,
    Custom,
    CustomConditionRegistry,
    FieldContains,
    FieldEquals,
    FieldExists,
    FieldGreaterThan,
    FieldIn,
    FieldLessThan,
    FieldMatches,
    FieldNotEquals,
    FieldNotExists,
    FieldNotIn,
    Not,
    Or,
    Polarity,
    ProviderIs,
    RegionIs,
    ResourceTypeIs,
    TagEquals,
    TagMissing,
)
from complycore.resources import (
    MISSING,
    CostSummary,
    EvaluationInput,
    FlatView,
    GraphContext,
    PlanSummary,
    Resource,
    flatten_input,
)


def make_resource(**overrides) -> Resource:
    data = {
        "id": "r1",
        "type": "aws_s3_bucket",
        "provider": "aws",
        "region": "us-east-1",
        "name": "logs",
        "status": "active",
        "tags": {"environment": "production", "owner": "platform"},
        "metadata": {
            "encrypted": False,
            "acl": "private",
            "size_gb": 120,
            "versioning": {"enabled": True, "mfa_delete": "off"},
            "ports": [22, 443],
        },
    }
    data.update(overrides)
    return Resource.from_dict(data)


@pytest.fixture
def view() -> FlatView:
    return flatten_input(make_resource())


class TestFlatView:
    """Test the dotted-path flattener."""

    def test_resource_fields(self, view):
        """Test top-level resource fields are addressable."""
        assert view.get("resource.id") == "r1"
        assert view.get("resource.type") == "aws_s3_bucket"
        assert view.get("resource.tags.owner") == "platform"

    def test_nested_metadata(self, view):
        """Test nested metadata is reachable with deeper paths."""
        assert view.get("resource.metadata.versioning.enabled") is True
        assert view.get("resource.metadata.versioning.mfa_delete") == "off"

    def test_intermediate_mappings(self, view):
        """Test intermediate mappings are themselves addressable."""
        assert view.get("resource.tags") == {"environment": "production", "owner": "platform"}
        assert view.get("resource.metadata.versioning") == {"enabled": True, "mfa_delete": "off"}

    def test_missing_path(self, view):
        """Test absent paths resolve to MISSING."""
        assert view.get("resource.metadata.nope") is MISSING
        assert "resource.metadata.nope" not in view
        assert view.get("plan.totalDeletes") is MISSING

    def test_all_namespaces(self):
        """Test plan, cost and graph namespaces use camelCase paths."""
        flat = flatten_input(
            EvaluationInput(
                plan=PlanSummary(total_creates=1, total_updates=2, total_deletes=3),
                cost=CostSummary(current=100, projected=250),
                graph=GraphContext(neighbors=["a"], blast_radius=7, dependency_depth=2),
                environment="staging",
            )
        )
        assert flat.get("plan.totalDeletes") == 3
        assert flat.get("cost.delta") == 150
        assert flat.get("graph.blastRadius") == 7
        assert flat.get("environment") == "staging"
        assert flat.get("resource.id") is MISSING
        assert flat.resource is None


class TestFieldConditions:
    """Test field comparison nodes."""

    def test_field_equals(self, view):
        """Test strict equality."""
        assert FieldEquals("resource.metadata.acl", "private").evaluate(view) is True
        assert FieldEquals("resource.metadata.acl", "public-read").evaluate(view) is False

    def test_booleans_never_equal_numbers(self, view):
        """Test that False does not equal 0."""
        assert FieldEquals("resource.metadata.encrypted", False).evaluate(view) is True
        assert FieldEquals("resource.metadata.encrypted", 0).evaluate(view) is False
        assert FieldIn("resource.metadata.encrypted", [0, "false"]).evaluate(view) is False

    def test_field_equals_mapping(self):
        """Test deep equality against an empty tag map."""
        untagged = flatten_input(make_resource(tags={}))
        assert FieldEquals("resource.tags", {}).evaluate(untagged) is True
        assert FieldEquals("resource.tags", {}).evaluate(flatten_input(make_resource())) is False

    def test_field_not_equals_missing(self, view):
        """Test not-equals is true for an absent field."""
        assert FieldNotEquals("resource.metadata.nope", "x").evaluate(view) is True
        assert FieldNotEquals("resource.metadata.acl", "private").evaluate(view) is False

    def test_field_contains(self, view):
        """Test substring and list membership."""
        assert FieldContains("resource.name", "og").evaluate(view) is True
        assert FieldContains("resource.metadata.ports", 22).evaluate(view) is True
        assert FieldContains("resource.metadata.ports", 80).evaluate(view) is False
        assert FieldContains("resource.metadata.size_gb", 1).evaluate(view) is False

    def test_field_matches(self, view):
        """Test regex search against stringified values."""
        assert FieldMatches("resource.region", r"^us-").evaluate(view) is True
        assert FieldMatches("resource.metadata.size_gb", r"^12\d$").evaluate(view) is True
        assert FieldMatches("resource.name", "LOGS", flags="i").evaluate(view) is True
        assert FieldMatches("resource.metadata.nope", ".*").evaluate(view) is False

    def test_invalid_regex_rejected_at_construction(self):
        """Test a bad pattern raises when the node is built."""
        with pytest.raises(PolicyValidationError):
            FieldMatches("resource.name", "([unclosed")

    def test_numeric_comparisons(self, view):
        """Test gt/lt with numeric coercion."""
        assert FieldGreaterThan("resource.metadata.size_gb", 100).evaluate(view) is True
        assert FieldLessThan("resource.metadata.size_gb", 100).evaluate(view) is False
        assert FieldGreaterThan("resource.metadata.size_gb", "119.5").evaluate(view) is True

    def test_non_numeric_never_compares(self, view):
        """Test missing and non-numeric values fail both comparisons."""
        for path in ("resource.metadata.nope", "resource.metadata.acl", "resource.tags"):
            assert FieldGreaterThan(path, 0).evaluate(view) is False
            assert FieldLessThan(path, 0).evaluate(view) is False

    def test_boolean_coerces_to_number(self, view):
        """Test booleans compare as 0/1."""
        assert FieldLessThan("resource.metadata.encrypted", 1).evaluate(view) is True

    def test_exists(self, view):
        """Test existence checks."""
        assert FieldExists("resource.metadata.encrypted").evaluate(view) is True
        assert FieldNotExists("resource.metadata.encryption").evaluate(view) is True
        assert FieldExists("resource.metadata.versioning").evaluate(view) is True

    def test_set_membership(self, view):
        """Test in/not-in."""
        assert FieldIn("resource.region", ["us-east-1", "eu-west-1"]).evaluate(view) is True
        assert FieldNotIn("resource.region", ["eu-west-1"]).evaluate(view) is True
        assert FieldNotIn("resource.metadata.nope", ["x"]).evaluate(view) is True


class TestShortcuts:
    """Test tag and identity shortcut nodes."""

    def test_tags(self, view):
        """Test tag checks."""
        assert TagMissing("team").evaluate(view) is True
        assert TagMissing("owner").evaluate(view) is False
        assert TagEquals("environment", "production").evaluate(view) is True
        assert TagEquals("environment", "staging").evaluate(view) is False

    def test_identity(self, view):
        """Test type/provider/region shortcuts."""
        assert ResourceTypeIs("aws_s3_bucket").evaluate(view) is True
        assert ProviderIs("gcp").evaluate(view) is False
        assert RegionIs("us-east-1").evaluate(view) is True

    def test_no_resource(self):
        """Test shortcuts when the input carries no resource."""
        empty = flatten_input(EvaluationInput(plan=PlanSummary()))
        assert TagMissing("owner").evaluate(empty) is True
        assert TagEquals("owner", "x").evaluate(empty) is False
        assert ResourceTypeIs("aws_s3_bucket").evaluate(empty) is False


class TestCombinators:
    """Test and/or/not."""

    def test_and_or_not(self, view):
        """Test boolean composition."""
        yes = FieldEquals("resource.provider", "aws")
        no = FieldEquals("resource.provider", "gcp")
        assert And((yes, yes)).evaluate(view) is True
        assert And((yes, no)).evaluate(view) is False
        assert Or((no, yes)).evaluate(view) is True
        assert Or((no, no)).evaluate(view) is False
        assert Not(no).evaluate(view) is True

    def test_empty_combinators(self, view):
        """Test vacuous and/or."""
        assert And(()).evaluate(view) is True
        assert Or(()).evaluate(view) is False


class TestCustomConditions:
    """Test the custom extension point."""

    def test_no_registry_is_false(self, view):
        """Test custom evaluates to false without a registry."""
        assert Custom("anything").evaluate(view) is False

    def test_registered_handler(self, view):
        """Test a registered handler receives args and view."""
        registry = CustomConditionRegistry()

        @registry.register("size_over")
        def size_over(args, flat):
            return flat.get("resource.metadata.size_gb") > args["limit"]

        evaluator = ConditionEvaluator(registry)
        assert evaluator.evaluate(Custom("size_over", {"limit": 100}), view) is True
        assert evaluator.evaluate(Custom("size_over", {"limit": 500}), view) is False
        assert "size_over" in registry

    def test_unknown_name_is_false(self, view, caplog):
        """Test unknown names log a warning and evaluate to false."""
        evaluator = ConditionEvaluator(CustomConditionRegistry())
        with caplog.at_level(logging.WARNING, logger="complycore"):
            assert evaluator.evaluate(Custom("missing"), view) is False
        assert "not registered" in caplog.text

    def test_raising_handler_is_false(self, view, caplog):
        """Test a raising handler is logged and treated as false."""
        registry = CustomConditionRegistry()
        registry.register("boom", lambda args, flat: 1 / 0)
        with caplog.at_level(logging.WARNING, logger="complycore"):
            assert ConditionEvaluator(registry).evaluate(Custom("boom"), view) is False
        assert "raised" in caplog.text


class TestWireFormat:
    """Test parsing conditions from dictionaries."""

    def test_nested_round_trip(self):
        """Test a nested tree parses and serializes back unchanged."""
        data = {
            "type": "and",
            "conditions": [
                {"type": "tag_equals", "tag": "environment", "value": "production"},
                {"type": "not", "condition": {"type": "field_exists", "field": "plan.totalDeletes"}},
                {"type": "resource_type", "resource_type": "aws_instance"},
            ],
        }
        assert Condition.from_dict(data).to_dict() == data

    def test_resource_type_camel_case(self):
        """Test the resourceType alias."""
        node = Condition.from_dict({"type": "resource_type", "resourceType": "aws_instance"})
        assert node == ResourceTypeIs("aws_instance")

    def test_unknown_type(self):
        """Test unknown node types carry the path."""
        with pytest.raises(PolicyValidationError) as exc_info:
            Condition.from_dict(
                {"type": "or", "conditions": [{"type": "field_equals", "field": "a", "value": 1},
                                              {"type": "eval"}]}
            )
        assert exc_info.value.path == "condition.conditions[1].type"

    def test_bad_regex_path(self):
        """Test regex errors point at the pattern."""
        with pytest.raises(PolicyValidationError) as exc_info:
            Condition.from_dict({"type": "field_matches", "field": "a", "pattern": "("}, "rule")
        assert exc_info.value.path == "rule.pattern"

    def test_missing_field(self):
        """Test a node without its required field is rejected."""
        with pytest.raises(PolicyValidationError):
            Condition.from_dict({"type": "field_equals", "value": 1})


class TestPolarity:
    """Test one evaluator serving both modes."""

    def test_violation_polarity(self, view):
        """Test the same condition under both polarities."""
        evaluator = ConditionEvaluator()
        encrypted = FieldEquals("resource.metadata.encrypted", True)
        assert evaluator.is_violation(encrypted, view, Polarity.PASS_IF_TRUE) is True
        assert evaluator.is_violation(encrypted, view, Polarity.VIOLATE_IF_TRUE) is False

    def test_accepts_resource_and_dict(self):
        """Test the evaluator flattens resources and parses dict conditions."""
        evaluator = ConditionEvaluator()
        condition = {"type": "provider", "provider": "aws"}
        assert evaluator.evaluate(condition, make_resource()) is True
        assert evaluator.evaluate(condition, EvaluationInput(resource=make_resource())) is True
