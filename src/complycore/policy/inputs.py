"""Helpers that build ``EvaluationInput`` bundles for common checks."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from complycore.resources import (
    Actor,
    CostSummary,
    EvaluationInput,
    GraphContext,
    PlanSummary,
    Resource,
)


def _resource(resource: Resource | Mapping[str, Any]) -> Resource:
    return resource if isinstance(resource, Resource) else Resource.from_dict(resource)


def build_resource_input(
    resource: Resource | Mapping[str, Any],
    environment: str | None = None,
    graph: GraphContext | None = None,
) -> EvaluationInput:
    """Input for checking a single resource."""
    return EvaluationInput(resource=_resource(resource), graph=graph, environment=environment)


def build_plan_input(
    creates: int = 0,
    updates: int = 0,
    deletes: int = 0,
    resources: Sequence[Any] = (),
    environment: str | None = None,
    resource: Resource | Mapping[str, Any] | None = None,
) -> EvaluationInput:
    """Input for checking a plan's change counts."""
    return EvaluationInput(
        resource=_resource(resource) if resource is not None else None,
        plan=PlanSummary(
            total_creates=creates,
            total_updates=updates,
            total_deletes=deletes,
            resources=list(resources),
        ),
        environment=environment,
    )


def build_cost_input(
    current: float,
    projected: float,
    currency: str = "USD",
    resource: Resource | Mapping[str, Any] | None = None,
) -> EvaluationInput:
    """Input for checking a cost change; ``delta`` is ``projected - current``."""
    return EvaluationInput(
        resource=_resource(resource) if resource is not None else None,
        cost=CostSummary(current=current, projected=projected, currency=currency),
    )


def build_drift_input(
    resource: Resource | Mapping[str, Any],
    drifted_fields: Sequence[str],
    environment: str | None = None,
) -> EvaluationInput:
    """Input for checking configuration drift.

    Sets ``metadata.drifted``, ``metadata.driftFieldCount`` and
    ``metadata.driftedFields`` on a copy of the resource.
    """
    fields = list(drifted_fields)
    drifted = _resource(resource).with_metadata(
        drifted=bool(fields),
        driftFieldCount=len(fields),
        driftedFields=fields,
    )
    return EvaluationInput(resource=drifted, environment=environment)


def build_access_input(
    actor: Actor | Mapping[str, Any],
    target_resource: Resource | Mapping[str, Any],
    operation: str,
    environment: str | None = None,
) -> EvaluationInput:
    """Input for checking whether ``actor`` may run ``operation`` on a resource."""
    return EvaluationInput(
        resource=_resource(target_resource).with_metadata(requestedOperation=operation),
        actor=actor if isinstance(actor, Actor) else Actor.from_dict(actor),
        environment=environment,
    )
