from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from procurement.models import OptimizationStrategy, OptimizationWeights


class EvictionPolicy(str, Enum):
    LRU = "lru"
    LFU = "lfu"
    TTL = "ttl"
    SIZE_BASED = "size_based"


@dataclass
class CacheConfig:
    max_size: int = 10_000
    default_ttl_s: float = 300.0
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    cleanup_interval_s: float = 60.0


@dataclass
class PerformanceConfig:
    max_execution_time_s: float = 10.0
    batch_size: int = 100
    batch_delay_s: float = 0.01
    monitor_interval_s: float = 60.0
    slow_response_ms: float = 1000.0
    sample_window: int = 1000  # rolling window for p95/p99


@dataclass
class BusinessRules:
    allow_cross_level_transactions: bool = False
    require_team_membership: bool = True
    enforce_minimum_stock: bool = True
    enable_blacklist: bool = True
    blacklisted_accounts: tuple[str, ...] = ()


@dataclass
class NetworkConfig:
    auto_rebuild: bool = True
    rebuild_interval_s: float = 300.0
    incremental_update: bool = True


@dataclass
class GeneticConfig:
    population_size: int = 30
    max_generations: int = 10
    tournament_size: int = 3
    crossover_rate: float = 0.8
    mutation_rate: float = 0.1
    mutation_scale: float = 0.2  # delta drawn from [-scale/2, +scale/2)
    convergence_threshold: float = 0.001
    convergence_min_generation: int = 5


@dataclass
class OptimizerConfig:
    # Optimization defaults
    default_strategy: OptimizationStrategy = OptimizationStrategy.BALANCED
    default_weights: OptimizationWeights = field(default_factory=OptimizationWeights)
    random_seed: Optional[int] = None

    # Search bounds
    max_search_depth: int = 10
    max_paths: int = 20
    max_optimization_paths: int = 50
    max_pareto_solutions: int = 20
    search_timeout_s: float = 5.0
    optimization_timeout_s: float = 8.0

    # Delivery model
    hours_per_hop: float = 24.0
    max_delivery_hours: float = 168.0

    cache: CacheConfig = field(default_factory=CacheConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    business_rules: BusinessRules = field(default_factory=BusinessRules)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    genetic: GeneticConfig = field(default_factory=GeneticConfig)
