from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

import numpy as np

from procurement.config import GeneticConfig
from procurement.models import ObjectiveScores, OptimizationWeights, ProcurementPath
from procurement.scoring import OBJECTIVES, weighted_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneticOutcome:
    population: tuple[ProcurementPath, ...]
    generations: int
    converged: bool
    timed_out: bool
    best_history: tuple[float, ...]


def _by_score(population: list[ProcurementPath]) -> list[ProcurementPath]:
    # stable: on equal scores earlier individuals (parents) stay ahead
    return sorted(population, key=lambda p: -p.overall_score)


class GeneticSearch:
    """
    Multi-objective genetic search over a candidate path set.

    Individuals are immutable ProcurementPath values; crossover and mutation
    always return new values with fresh ids and never touch their inputs.
    Objective scores are the currency of the search: mutation perturbs a score
    directly, so a mutant's scores can drift from its literal attributes until
    the caller re-scores the final population.
    """

    def __init__(
        self,
        config: GeneticConfig,
        *,
        rng: np.random.Generator,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.rng = rng
        self.clock = clock

    def run(
        self,
        candidates: Sequence[ProcurementPath],
        weights: OptimizationWeights,
        *,
        deadline: Optional[float] = None,
    ) -> GeneticOutcome:
        cfg = self.config
        size = min(cfg.population_size, len(candidates))
        picks = self.rng.choice(len(candidates), size=size, replace=False)
        population = [candidates[int(i)] for i in picks]

        generations = 0
        converged = timed_out = False
        history: list[float] = []
        for generation in range(1, cfg.max_generations + 1):
            population = self._evaluate(population, weights)
            selected = [self._tournament(population) for _ in range(len(population))]
            offspring = self._breed(selected, weights)
            offspring = [self.mutate(p) if self.rng.random() < cfg.mutation_rate else p for p in offspring]
            population = _by_score(population + offspring)[:size]
            generations = generation
            history.append(population[0].overall_score)

            if generation >= cfg.convergence_min_generation:
                variance = float(np.var([p.overall_score for p in population]))
                if variance < cfg.convergence_threshold:
                    converged = True
                    logger.debug(f"genetic search converged generation={generation} variance={variance:.6f}")
                    break
            if deadline is not None and self.clock() > deadline:
                timed_out = True
                logger.warning(f"genetic search hit its deadline generation={generation}")
                break

        return GeneticOutcome(
            population=tuple(population),
            generations=generations,
            converged=converged,
            timed_out=timed_out,
            best_history=tuple(history),
        )

    @staticmethod
    def _evaluate(population: list[ProcurementPath], weights: OptimizationWeights) -> list[ProcurementPath]:
        return [replace(p, overall_score=weighted_score(p.scores, weights)) for p in population]

    def _tournament(self, population: list[ProcurementPath]) -> ProcurementPath:
        draws = self.rng.integers(0, len(population), size=self.config.tournament_size)
        best = population[int(draws[0])]
        for i in draws[1:]:
            cand = population[int(i)]
            if cand.overall_score > best.overall_score:
                best = cand
        return best

    def _breed(self, selected: list[ProcurementPath], weights: OptimizationWeights) -> list[ProcurementPath]:
        offspring: list[ProcurementPath] = []
        for i in range(0, len(selected) - 1, 2):
            a, b = selected[i], selected[i + 1]
            if self.rng.random() < self.config.crossover_rate:
                offspring.append(self.crossover(a, b, weights))
            else:
                offspring.extend((a, b))
        if len(selected) % 2:
            offspring.append(selected[-1])
        return offspring

    def crossover(self, a: ProcurementPath, b: ProcurementPath, weights: OptimizationWeights) -> ProcurementPath:
        """
        One child per pair: numeric attributes and scores are parent means,
        stock is the parent maximum. The node sequence comes from the fitter
        parent so total_length still matches the nodes.
        """
        fitter = a if a.overall_score >= b.overall_score else b
        scores = ObjectiveScores(
            price=(a.scores.price + b.scores.price) / 2,
            inventory=(a.scores.inventory + b.scores.inventory) / 2,
            length=(a.scores.length + b.scores.length) / 2,
            reliability=(a.scores.reliability + b.scores.reliability) / 2,
            speed=(a.scores.speed + b.scores.speed) / 2,
        )
        return replace(
            fitter,
            path_id=f"crossover_{uuid.uuid4().hex[:12]}",
            total_price=(a.total_price + b.total_price) / 2,
            available_stock=max(a.available_stock, b.available_stock),
            estimated_delivery_hours=(a.estimated_delivery_hours + b.estimated_delivery_hours) / 2,
            reliability=(a.reliability + b.reliability) / 2,
            scores=scores,
            overall_score=(a.overall_score + b.overall_score) / 2,
            metadata=replace(
                fitter.metadata,
                algorithm="genetic_crossover",
                weights=weights,
                parent_ids=(a.path_id, b.path_id),
            ),
            source_path_id=fitter.source_path_id,
        )

    def mutate(self, path: ProcurementPath) -> ProcurementPath:
        objective = OBJECTIVES[int(self.rng.integers(0, len(OBJECTIVES)))]
        delta = (float(self.rng.random()) - 0.5) * self.config.mutation_scale
        value = min(1.0, max(0.0, getattr(path.scores, objective) + delta))
        scores = replace(path.scores, **{objective: value})
        return replace(
            path,
            path_id=f"mutated_{uuid.uuid4().hex[:12]}",
            scores=scores,
            overall_score=scores.objective_mean(),
            metadata=replace(path.metadata, algorithm="genetic_mutation", parent_ids=(path.path_id,)),
        )
