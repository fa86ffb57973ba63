from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Mapping, Optional

from procurement.errors import InvalidRequestError


class UserLevel(IntEnum):
    NORMAL = 0
    VIP = 1
    STAR_1 = 2
    STAR_2 = 3
    STAR_3 = 4
    STAR_4 = 5
    STAR_5 = 6
    DIRECTOR = 7


class AccountRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    TEAM_LEADER = "team_leader"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class NodeRole(str, Enum):
    """Position of an account inside one procurement path."""

    BUYER = "buyer"
    INTERMEDIATE = "intermediate"
    SUPPLIER = "supplier"


class EdgeRelation(str, Enum):
    TEAM = "team"  # buyer -> team upline
    SUPPLY = "supply"  # buyer -> declared non-team supplier


class OptimizationStrategy(str, Enum):
    PRICE_FIRST = "price_first"
    INVENTORY_FIRST = "inventory_first"
    LENGTH_FIRST = "length_first"
    RELIABILITY_FIRST = "reliability_first"
    BALANCED = "balanced"
    CUSTOM = "custom"


class SearchStrategy(str, Enum):
    BFS = "bfs"
    DFS = "dfs"
    DIJKSTRA = "dijkstra"


@dataclass
class AccountRecord:
    """
    One account row as served by the account/inventory data source.

    `stock` and `prices` are keyed by product id. `supplier_links` maps a
    non-team supplier account id to the hop cost of sourcing from it.
    """

    account_id: str
    level: UserLevel = UserLevel.NORMAL
    role: AccountRole = AccountRole.BUYER
    status: AccountStatus = AccountStatus.ACTIVE
    parent_id: Optional[str] = None
    hop_cost: float = 1.0  # cost of the edge to parent_id
    supplier_links: dict[str, float] = field(default_factory=dict)
    stock: dict[str, int] = field(default_factory=dict)
    prices: dict[str, float] = field(default_factory=dict)

    # Reliability metadata
    reliability: float = 0.95
    response_time_hours: float = 2.0
    commission_rate: float = 0.05
    relay_fee: float = 0.0


@dataclass(frozen=True)
class OptimizationWeights:
    price: float = 0.35
    inventory: float = 0.25
    length: float = 0.20
    reliability: float = 0.15
    speed: float = 0.05

    def __post_init__(self) -> None:
        for f in fields(self):
            v = getattr(self, f.name)
            if v < 0:
                raise InvalidRequestError(f"weight '{f.name}' must be non-negative", details={f.name: v})

    @property
    def total(self) -> float:
        return float(self.price + self.inventory + self.length + self.reliability + self.speed)

    def normalized(self) -> "OptimizationWeights":
        total = self.total
        if total <= 0:
            return OptimizationWeights(0.0, 0.0, 0.0, 0.0, 0.0)
        return OptimizationWeights(
            price=self.price / total,
            inventory=self.inventory / total,
            length=self.length / total,
            reliability=self.reliability / total,
            speed=self.speed / total,
        )

    def merged(self, overrides: Optional[Mapping[str, float]]) -> "OptimizationWeights":
        """Returns a copy with the given weights replaced; unknown names are rejected."""
        if not overrides:
            return self
        values = self.as_dict()
        for name, value in overrides.items():
            if name not in values:
                raise InvalidRequestError(f"unknown weight '{name}'", details={"weights": dict(overrides)})
            values[name] = float(value)
        return OptimizationWeights(**values)

    def as_dict(self) -> dict[str, float]:
        return {f.name: float(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class PathNode:
    account_id: str
    level: UserLevel
    role: NodeRole
    price: float  # per-hop price paid to this account (quote or relay fee)
    available_stock: int
    hop_cost: float
    reliability: float
    response_time_hours: float
    commission_rate: float


@dataclass(frozen=True)
class ObjectiveScores:
    price: float
    inventory: float
    length: float
    reliability: float
    speed: float

    def objective_mean(self) -> float:
        # speed is derived, not one of the four optimization objectives
        return (self.price + self.inventory + self.length + self.reliability) / 4.0


@dataclass(frozen=True)
class PathMetadata:
    algorithm: str
    weights: OptimizationWeights
    search_depth: int
    alternative_paths: int
    calculated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    parent_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProcurementPath:
    path_id: str
    buyer_id: str
    product_id: str
    quantity: int
    nodes: tuple[PathNode, ...]
    total_price: float
    total_length: int
    available_stock: int
    estimated_delivery_hours: float
    reliability: float
    scores: ObjectiveScores
    overall_score: float
    metadata: PathMetadata
    source_path_id: str = ""

    def __post_init__(self) -> None:
        if not self.source_path_id:
            object.__setattr__(self, "source_path_id", self.path_id)

    @property
    def node_ids(self) -> tuple[str, ...]:
        return tuple(n.account_id for n in self.nodes)

    @property
    def supplier_id(self) -> str:
        return self.nodes[-1].account_id

    @property
    def is_synthetic(self) -> bool:
        """True for genetic-search offspring that were not discovered in the graph."""
        return self.source_path_id != self.path_id

    def describe(self) -> str:
        return "->".join(self.node_ids)


@dataclass(frozen=True)
class BestPaths:
    by_price: Optional[ProcurementPath] = None
    by_inventory: Optional[ProcurementPath] = None
    by_length: Optional[ProcurementPath] = None
    by_reliability: Optional[ProcurementPath] = None
    by_overall: Optional[ProcurementPath] = None


@dataclass(frozen=True)
class OptimizationStatistics:
    paths_explored: int
    valid_paths: int
    average_length: float
    average_price: float
    optimization_time_ms: float
    generations: int = 0


@dataclass(frozen=True)
class OptimizationResult:
    paths: tuple[ProcurementPath, ...]
    pareto_front: tuple[ProcurementPath, ...]
    best_paths: BestPaths
    statistics: OptimizationStatistics
    algorithm: str
    strategy: OptimizationStrategy
    weights: OptimizationWeights
    convergence_criterion: str = "score_improvement"
    converged: bool = False


@dataclass(frozen=True)
class ValidationDetails:
    level_compliance: bool = True
    team_relationship: bool = True
    inventory_check: bool = True
    price_validation: bool = True
    path_continuity: bool = True


@dataclass(frozen=True)
class PathValidationResult:
    is_valid: bool
    is_complete: bool
    has_valid_permissions: bool
    has_sufficient_stock: bool
    reasons: tuple[str, ...]
    warnings: tuple[str, ...]
    details: ValidationDetails
    validated_at: datetime
    validation_time_ms: float
    checked_nodes: int
    checked_edges: int


@dataclass(frozen=True)
class PathFindOptions:
    max_depth: Optional[int] = None
    max_paths: Optional[int] = None
    search_strategy: SearchStrategy = SearchStrategy.BFS
    preferred_suppliers: tuple[str, ...] = ()
    blacklisted_suppliers: tuple[str, ...] = ()
    min_supplier_level: Optional[UserLevel] = None
    price_range: Optional[tuple[float, float]] = None
    timeout_s: Optional[float] = None


@dataclass(frozen=True)
class RequestOptions:
    """Per-call options accepted by the orchestrator's lookup operations."""

    strategy: Optional[OptimizationStrategy] = None
    weights: Optional[Mapping[str, float]] = None
    max_paths: Optional[int] = None
    max_depth: Optional[int] = None
    use_cache: bool = True
    search_strategy: Optional[SearchStrategy] = None
    preferred_suppliers: tuple[str, ...] = ()
    blacklisted_suppliers: tuple[str, ...] = ()

    def cache_token(self) -> dict[str, Any]:
        # use_cache does not change the answer, so it is not part of the key
        return {
            "strategy": self.strategy.value if self.strategy else None,
            "weights": dict(sorted(self.weights.items())) if self.weights else None,
            "max_paths": self.max_paths,
            "max_depth": self.max_depth,
            "search_strategy": self.search_strategy.value if self.search_strategy else None,
            "preferred": sorted(self.preferred_suppliers),
            "blacklisted": sorted(self.blacklisted_suppliers),
        }


@dataclass(frozen=True)
class PurchaseRequest:
    buyer_id: str
    product_id: str
    quantity: int
    options: Optional[RequestOptions] = None


@dataclass(frozen=True)
class BatchItem:
    request: PurchaseRequest
    result: Optional[ProcurementPath] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None
