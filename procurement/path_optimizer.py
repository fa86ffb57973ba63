from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import replace
from typing import Any, Callable, Mapping, Optional, Sequence

import numpy as np

from procurement.config import OptimizerConfig
from procurement.errors import OptimizationFailedError, PathNotFoundError, SupplyChainError
from procurement.genetic import GeneticSearch
from procurement.metrics import PerformanceTracker
from procurement.models import (
    BestPaths,
    OptimizationResult,
    OptimizationStatistics,
    OptimizationStrategy,
    OptimizationWeights,
    ProcurementPath,
)
from procurement.scoring import ScoreContext, objective_key, overall_key, pareto_front, rescore, weighted_score

logger = logging.getLogger(__name__)

STRATEGY_WEIGHTS: dict[OptimizationStrategy, OptimizationWeights] = {
    OptimizationStrategy.PRICE_FIRST: OptimizationWeights(0.60, 0.15, 0.15, 0.05, 0.05),
    OptimizationStrategy.INVENTORY_FIRST: OptimizationWeights(0.15, 0.60, 0.10, 0.10, 0.05),
    OptimizationStrategy.LENGTH_FIRST: OptimizationWeights(0.20, 0.20, 0.50, 0.05, 0.05),
    OptimizationStrategy.RELIABILITY_FIRST: OptimizationWeights(0.15, 0.15, 0.10, 0.55, 0.05),
}

PRIMARY_OBJECTIVE: dict[OptimizationStrategy, str] = {
    OptimizationStrategy.PRICE_FIRST: "price",
    OptimizationStrategy.INVENTORY_FIRST: "inventory",
    OptimizationStrategy.LENGTH_FIRST: "length",
    OptimizationStrategy.RELIABILITY_FIRST: "reliability",
}

ALGORITHM_NAMES: dict[OptimizationStrategy, str] = {
    OptimizationStrategy.PRICE_FIRST: "price_priority_optimization",
    OptimizationStrategy.INVENTORY_FIRST: "inventory_priority_optimization",
    OptimizationStrategy.LENGTH_FIRST: "length_priority_optimization",
    OptimizationStrategy.RELIABILITY_FIRST: "reliability_priority_optimization",
    OptimizationStrategy.CUSTOM: "custom_weight_optimization",
    OptimizationStrategy.BALANCED: "genetic_algorithm_optimization",
}


class PathOptimizer:
    """Scores, ranks and (for BALANCED) evolves a candidate path set."""

    def __init__(
        self,
        config: Optional[OptimizerConfig] = None,
        *,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or OptimizerConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.random_seed)
        self.clock = clock
        self.genetic = GeneticSearch(self.config.genetic, rng=self.rng, clock=clock)
        self.metrics = PerformanceTracker("path_optimizer", window=self.config.performance.sample_window)
        self.strategy_usage: Counter[str] = Counter()

    def resolve_weights(
        self,
        strategy: OptimizationStrategy,
        weights: Optional[Mapping[str, float]] = None,
    ) -> OptimizationWeights:
        base = STRATEGY_WEIGHTS.get(strategy, self.config.default_weights)
        return base.merged(weights)

    def optimize(
        self,
        paths: Sequence[ProcurementPath],
        *,
        weights: Optional[Mapping[str, float]] = None,
        strategy: Optional[OptimizationStrategy] = None,
    ) -> OptimizationResult:
        strategy = OptimizationStrategy(strategy or self.config.default_strategy)
        if not paths:
            raise PathNotFoundError("no candidate paths to optimize", details={"strategy": strategy.value})
        resolved = self.resolve_weights(strategy, weights)
        start = time.perf_counter()
        try:
            with self.metrics.track():
                result = self._optimize(list(paths), resolved, strategy, start)
        except SupplyChainError:
            raise
        except Exception as exc:
            first = paths[0]
            logger.error(
                f"optimization failed buyer={first.buyer_id} product={first.product_id} "
                f"qty={first.quantity} strategy={strategy.value} "
                f"elapsed_ms={(time.perf_counter() - start) * 1000.0:.1f} error={exc}"
            )
            raise OptimizationFailedError(
                "path optimization failed",
                details={
                    "buyer_id": first.buyer_id,
                    "product_id": first.product_id,
                    "quantity": first.quantity,
                    "strategy": strategy.value,
                },
            ) from exc
        self.strategy_usage[strategy.value] += 1
        logger.info(
            f"optimization done strategy={strategy.value} candidates={len(paths)} "
            f"ranked={len(result.paths)} pareto={len(result.pareto_front)} "
            f"elapsed_ms={result.statistics.optimization_time_ms:.1f}"
        )
        return result

    def _optimize(
        self,
        paths: list[ProcurementPath],
        weights: OptimizationWeights,
        strategy: OptimizationStrategy,
        start: float,
    ) -> OptimizationResult:
        cfg = self.config
        algorithm = ALGORITHM_NAMES[strategy]
        objective = PRIMARY_OBJECTIVE.get(strategy)
        rank_key = objective_key(objective) if objective else overall_key
        candidates = paths
        if len(paths) > cfg.max_optimization_paths:
            # cut by the requested weights, not the finder's default scoring
            wide = ScoreContext.from_prices(
                (p.total_price for p in paths),
                max_depth=max(p.metadata.search_depth for p in paths),
                max_delivery_hours=cfg.max_delivery_hours,
            )
            candidates = sorted((self._score(p, wide, weights) for p in paths), key=rank_key)
            candidates = candidates[: cfg.max_optimization_paths]
        ctx = ScoreContext.from_prices(
            (p.total_price for p in candidates),
            max_depth=max(p.metadata.search_depth for p in candidates),
            max_delivery_hours=cfg.max_delivery_hours,
        )
        scored = [self._score(p, ctx, weights, algorithm) for p in candidates]

        generations = 0
        converged = False
        if strategy == OptimizationStrategy.BALANCED:
            outcome = self.genetic.run(scored, weights, deadline=self.clock() + cfg.optimization_timeout_s)
            final = self._settle(outcome.population, ctx, weights)
            generations, converged = outcome.generations, outcome.converged
        else:
            final = scored

        ranked = sorted(final, key=rank_key)
        front = pareto_front(ranked)

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        quantity = ranked[0].quantity
        stats = OptimizationStatistics(
            paths_explored=len(paths),
            valid_paths=sum(1 for p in ranked if p.available_stock >= quantity),
            average_length=float(np.mean([p.total_length for p in ranked])),
            average_price=float(np.mean([p.total_price for p in ranked])),
            optimization_time_ms=elapsed_ms,
            generations=generations,
        )
        return OptimizationResult(
            paths=tuple(ranked),
            pareto_front=tuple(front),
            best_paths=best_paths(ranked),
            statistics=stats,
            algorithm=algorithm,
            strategy=strategy,
            weights=weights,
            converged=converged,
        )

    @staticmethod
    def _score(
        path: ProcurementPath,
        ctx: ScoreContext,
        weights: OptimizationWeights,
        algorithm: Optional[str] = None,
    ) -> ProcurementPath:
        scores = rescore(path, ctx)
        return replace(
            path,
            scores=scores,
            overall_score=weighted_score(scores, weights),
            metadata=replace(path.metadata, algorithm=algorithm or path.metadata.algorithm, weights=weights),
        )

    def _settle(
        self,
        population: Sequence[ProcurementPath],
        ctx: ScoreContext,
        weights: OptimizationWeights,
    ) -> list[ProcurementPath]:
        """
        Re-derives every individual's scores from its attributes and collapses
        individuals that became identical. Discovered paths win over offspring.
        """
        settled: dict[tuple, ProcurementPath] = {}
        for p in sorted(population, key=lambda p: p.is_synthetic):
            signature = (
                p.node_ids,
                round(p.total_price, 9),
                p.available_stock,
                round(p.estimated_delivery_hours, 9),
                round(p.reliability, 9),
            )
            if signature not in settled:
                settled[signature] = self._score(p, ctx, weights)
        return list(settled.values())

    def health_check(self) -> dict[str, Any]:
        issues: list[str] = []
        if self.metrics.error_rate > 0.1:
            issues.append(f"error rate {self.metrics.error_rate:.0%} above 10%")
        if self.metrics.average_ms > self.config.performance.slow_response_ms:
            issues.append(f"average response {self.metrics.average_ms:.0f}ms above threshold")
        return {"healthy": not issues, "issues": issues}


def best_paths(ranked: Sequence[ProcurementPath]) -> BestPaths:
    if not ranked:
        return BestPaths()
    return BestPaths(
        by_price=min(ranked, key=lambda p: (p.total_price,) + overall_key(p)),
        by_inventory=min(ranked, key=lambda p: (-p.available_stock,) + overall_key(p)),
        by_length=min(ranked, key=lambda p: (p.total_length,) + overall_key(p)),
        by_reliability=min(ranked, key=lambda p: (-p.reliability,) + overall_key(p)),
        by_overall=min(ranked, key=overall_key),
    )
