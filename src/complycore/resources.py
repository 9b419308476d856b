"""Evaluation subjects and the dotted-path flattener.

A caller hands the engine an ``EvaluationInput`` bundle. Before any rule
runs, the bundle is flattened once into a ``FlatView``: a lookup table from
dotted paths (``resource.tags.owner``, ``plan.totalDeletes``,
``graph.blastRadius``) to values. Each namespace contributes its fields
through an accessor registered in ``NAMESPACE_ACCESSORS``; an absent
namespace contributes nothing, so references into it resolve to
``MISSING``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

MAX_FLATTEN_DEPTH = 16


class _Missing:
    """Sentinel for a path that is not present in the view."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key among camelCase / snake_case spellings."""
    for key in keys:
        if key in data:
            return data[key]
    return default


@dataclass
class Resource:
    """A normalized infrastructure resource.

    Attributes:
        id: Provider-unique identifier
        type: Resource type (``aws_s3_bucket``, ``database``, ...)
        provider: Cloud provider (``aws``, ``gcp``, ``azure``, ...)
        region: Region or location
        name: Human-readable name
        status: Lifecycle status (``active``, ``stopped``, ...)
        tags: Tag map (never None)
        metadata: Provider attributes, possibly nested
    """

    id: str
    type: str
    provider: str = ""
    region: str = ""
    name: str = ""
    status: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.tags is None:
            self.tags = {}
        if self.metadata is None:
            self.metadata = {}

    def with_metadata(self, **extra: Any) -> Resource:
        """Copy of this resource with extra metadata merged in."""
        return replace(self, metadata={**self.metadata, **extra})

    def to_fields(self) -> dict[str, Any]:
        """Fields exposed under the ``resource`` namespace."""
        return {
            "id": self.id,
            "type": self.type,
            "provider": self.provider,
            "region": self.region,
            "name": self.name,
            "status": self.status,
            "tags": dict(self.tags),
            "metadata": dict(self.metadata),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return self.to_fields()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Resource:
        """Create from dictionary (accepts ``resourceType`` for ``type``)."""
        return cls(
            id=data["id"],
            type=_pick(data, "type", "resourceType", "resource_type", default=""),
            provider=data.get("provider", ""),
            region=data.get("region", ""),
            name=data.get("name", ""),
            status=data.get("status", ""),
            tags=dict(data.get("tags") or {}),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class PlanSummary:
    """Change counts of an infrastructure plan."""

    total_creates: int = 0
    total_updates: int = 0
    total_deletes: int = 0
    resources: list[Any] = field(default_factory=list)

    def to_fields(self) -> dict[str, Any]:
        return {
            "totalCreates": self.total_creates,
            "totalUpdates": self.total_updates,
            "totalDeletes": self.total_deletes,
            "resources": list(self.resources),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlanSummary:
        return cls(
            total_creates=_pick(data, "totalCreates", "total_creates", default=0),
            total_updates=_pick(data, "totalUpdates", "total_updates", default=0),
            total_deletes=_pick(data, "totalDeletes", "total_deletes", default=0),
            resources=list(data.get("resources") or []),
        )


@dataclass
class CostSummary:
    """Current and projected cost of a change.

    ``delta`` defaults to ``projected - current``.
    """

    current: float = 0.0
    projected: float = 0.0
    delta: float | None = None
    currency: str = "USD"

    def __post_init__(self):
        if self.delta is None:
            self.delta = self.projected - self.current

    def to_fields(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "projected": self.projected,
            "delta": self.delta,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CostSummary:
        return cls(
            current=data.get("current", 0.0),
            projected=data.get("projected", 0.0),
            delta=data.get("delta"),
            currency=data.get("currency", "USD"),
        )


@dataclass
class GraphContext:
    """Dependency-graph facts about the resource under evaluation."""

    neighbors: list[str] = field(default_factory=list)
    blast_radius: int = 0
    dependency_depth: int = 0

    def to_fields(self) -> dict[str, Any]:
        return {
            "neighbors": list(self.neighbors),
            "blastRadius": self.blast_radius,
            "dependencyDepth": self.dependency_depth,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GraphContext:
        return cls(
            neighbors=list(data.get("neighbors") or []),
            blast_radius=_pick(data, "blastRadius", "blast_radius", default=0),
            dependency_depth=_pick(data, "dependencyDepth", "dependency_depth", default=0),
        )


@dataclass
class Actor:
    """Identity requesting the operation."""

    id: str
    roles: list[str] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)

    def to_fields(self) -> dict[str, Any]:
        return {"id": self.id, "roles": list(self.roles), "groups": list(self.groups)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Actor:
        return cls(
            id=data["id"],
            roles=list(data.get("roles") or []),
            groups=list(data.get("groups") or []),
        )


@dataclass
class EvaluationInput:
    """Optional-field bundle a policy is evaluated against."""

    resource: Resource | None = None
    plan: PlanSummary | None = None
    cost: CostSummary | None = None
    graph: GraphContext | None = None
    actor: Actor | None = None
    environment: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EvaluationInput:
        """Create from dictionary; absent namespaces stay None."""
        return cls(
            resource=Resource.from_dict(data["resource"]) if data.get("resource") else None,
            plan=PlanSummary.from_dict(data["plan"]) if data.get("plan") else None,
            cost=CostSummary.from_dict(data["cost"]) if data.get("cost") else None,
            graph=GraphContext.from_dict(data["graph"]) if data.get("graph") else None,
            actor=Actor.from_dict(data["actor"]) if data.get("actor") else None,
            environment=data.get("environment"),
        )


NamespaceAccessor = Callable[[EvaluationInput], "Mapping[str, Any] | None"]


def _fields_or_none(value: Any) -> Mapping[str, Any] | None:
    return value.to_fields() if value is not None else None


NAMESPACE_ACCESSORS: dict[str, NamespaceAccessor] = {
    "resource": lambda i: _fields_or_none(i.resource),
    "plan": lambda i: _fields_or_none(i.plan),
    "cost": lambda i: _fields_or_none(i.cost),
    "graph": lambda i: _fields_or_none(i.graph),
    "actor": lambda i: _fields_or_none(i.actor),
}


def _flatten_into(table: dict[str, Any], prefix: str, value: Any, depth: int) -> None:
    table[prefix] = value
    if depth >= MAX_FLATTEN_DEPTH or not isinstance(value, Mapping):
        return
    for key, child in value.items():
        _flatten_into(table, f"{prefix}.{key}", child, depth + 1)


class FlatView:
    """Read-only dotted-path table over one evaluation input.

    Intermediate mappings are addressable too: ``resource.tags`` yields the
    tag map, ``resource.tags.owner`` yields one tag value.
    """

    __slots__ = ("_table", "resource")

    def __init__(self, table: dict[str, Any], resource: Resource | None = None):
        self._table = table
        self.resource = resource

    @classmethod
    def from_input(cls, evaluation_input: EvaluationInput) -> FlatView:
        table: dict[str, Any] = {}
        for namespace, accessor in NAMESPACE_ACCESSORS.items():
            fields = accessor(evaluation_input)
            if fields is not None:
                _flatten_into(table, namespace, dict(fields), 0)
        if evaluation_input.environment is not None:
            table["environment"] = evaluation_input.environment
        return cls(table, evaluation_input.resource)

    @classmethod
    def from_resource(cls, resource: Resource) -> FlatView:
        return cls.from_input(EvaluationInput(resource=resource))

    def get(self, path: str) -> Any:
        """Value at ``path`` or ``MISSING``."""
        return self._table.get(path, MISSING)

    def __contains__(self, path: object) -> bool:
        return path in self._table

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._table))

    def __len__(self) -> int:
        return len(self._table)

    @property
    def tags(self) -> Mapping[str, str]:
        return self.resource.tags if self.resource is not None else {}


def flatten_input(evaluation_input: EvaluationInput | Resource) -> FlatView:
    """Flatten an input (or a bare resource) into a ``FlatView``."""
    if isinstance(evaluation_input, Resource):
        return FlatView.from_resource(evaluation_input)
    return FlatView.from_input(evaluation_input)
