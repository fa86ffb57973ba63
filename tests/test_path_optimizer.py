import numpy as np
import pytest

from procurement.config import GeneticConfig, OptimizerConfig
from procurement.errors import OptimizationFailedError, PathNotFoundError
from procurement.genetic import GeneticSearch
from procurement.models import ObjectiveScores, OptimizationStrategy, OptimizationWeights
from procurement.path_optimizer import STRATEGY_WEIGHTS, PathOptimizer
from procurement.scoring import dominates


def _candidates(make_path, n=12, seed=3):
    rng = np.random.default_rng(seed)
    return [
        make_path(
            price=float(rng.integers(50, 200)),
            stock=int(rng.integers(1, 40)),
            length=int(rng.integers(1, 5)),
            reliability=float(rng.uniform(0.7, 1.0)),
        )
        for _ in range(n)
    ]


def test_empty_candidates_raise_path_not_found():
    with pytest.raises(PathNotFoundError):
        PathOptimizer(OptimizerConfig(random_seed=1)).optimize([])


def test_price_first_ranks_by_non_decreasing_price(make_path):
    opt = PathOptimizer(OptimizerConfig(random_seed=1))
    result = opt.optimize(_candidates(make_path), strategy=OptimizationStrategy.PRICE_FIRST)

    prices = [p.total_price for p in result.paths]
    assert prices == sorted(prices)
    assert result.algorithm == "price_priority_optimization"
    assert result.weights == STRATEGY_WEIGHTS[OptimizationStrategy.PRICE_FIRST]
    assert opt.strategy_usage["price_first"] == 1


def test_price_first_is_deterministic(make_path):
    paths = _candidates(make_path)
    a = PathOptimizer(OptimizerConfig(random_seed=1)).optimize(paths, strategy=OptimizationStrategy.PRICE_FIRST)
    b = PathOptimizer(OptimizerConfig(random_seed=2)).optimize(paths, strategy=OptimizationStrategy.PRICE_FIRST)
    assert [p.path_id for p in a.paths] == [p.path_id for p in b.paths]


@pytest.mark.parametrize(
    "strategy, attr, descending",
    [
        (OptimizationStrategy.INVENTORY_FIRST, "available_stock", True),
        (OptimizationStrategy.LENGTH_FIRST, "total_length", False),
        (OptimizationStrategy.RELIABILITY_FIRST, "reliability", True),
    ],
)
def test_objective_first_strategies(make_path, strategy, attr, descending):
    result = PathOptimizer(OptimizerConfig(random_seed=1)).optimize(_candidates(make_path), strategy=strategy)
    values = [getattr(p, attr) for p in result.paths]
    assert values == sorted(values, reverse=descending)


def test_custom_weights_rank_by_overall_score(make_path):
    result = PathOptimizer(OptimizerConfig(random_seed=1)).optimize(
        _candidates(make_path),
        strategy=OptimizationStrategy.CUSTOM,
        weights={"price": 0.0, "inventory": 1.0, "length": 0.0, "reliability": 0.0, "speed": 0.0},
    )
    scores = [p.overall_score for p in result.paths]
    assert scores == sorted(scores, reverse=True)
    assert result.algorithm == "custom_weight_optimization"
    assert result.weights.inventory == 1.0
    for p in result.paths:
        assert p.overall_score == pytest.approx(p.scores.inventory)
        assert p.metadata.algorithm == "custom_weight_optimization"


def test_pareto_front_over_ranked_candidates(make_path):
    result = PathOptimizer(OptimizerConfig(random_seed=1)).optimize(
        _candidates(make_path, n=20), strategy=OptimizationStrategy.CUSTOM
    )
    front_ids = {p.path_id for p in result.pareto_front}
    assert front_ids
    for p in result.pareto_front:
        assert not any(dominates(q, p) for q in result.paths)
    for p in result.paths:
        if p.path_id not in front_ids:
            assert any(dominates(f, p) for f in result.pareto_front)


def test_pareto_front_keeps_every_non_dominated_path(make_path):
    # cheaper paths hold less stock, so no path dominates another
    paths = [make_path(price=80.0 + i, stock=20 + i) for i in range(25)]
    cfg = OptimizerConfig(random_seed=1)
    result = PathOptimizer(cfg).optimize(paths, strategy=OptimizationStrategy.PRICE_FIRST)

    assert len(result.pareto_front) == 25 > cfg.max_pareto_solutions
    front_ids = {p.path_id for p in result.pareto_front}
    for p in result.paths:
        if p.path_id not in front_ids:
            assert any(dominates(f, p) for f in result.pareto_front)


def test_best_paths_and_statistics(make_path):
    paths = [
        make_path(price=80, stock=6, length=3, reliability=0.8),
        make_path(price=100, stock=50, length=2, reliability=0.9),
        make_path(price=120, stock=3, length=1, reliability=0.99),
    ]
    result = PathOptimizer(OptimizerConfig(random_seed=1)).optimize(paths, strategy=OptimizationStrategy.CUSTOM)
    best = result.best_paths

    assert best.by_price.total_price == 80
    assert best.by_inventory.available_stock == 50
    assert best.by_length.total_length == 1
    assert best.by_reliability.reliability == 0.99
    assert best.by_overall.path_id == result.paths[0].path_id

    stats = result.statistics
    assert stats.paths_explored == 3
    assert stats.valid_paths == 2  # quantity is 5
    assert stats.average_price == pytest.approx(100.0)
    assert stats.average_length == pytest.approx(2.0)
    assert stats.generations == 0


def test_candidate_set_is_truncated(make_path):
    cfg = OptimizerConfig(random_seed=1, max_optimization_paths=4)
    result = PathOptimizer(cfg).optimize(_candidates(make_path, n=10), strategy=OptimizationStrategy.CUSTOM)
    assert len(result.paths) == 4
    assert result.statistics.paths_explored == 10


def test_truncation_uses_requested_strategy(make_path):
    # the finder scored the cheapest path lowest; price-first must still keep it
    cheapest = make_path(price=50, overall=0.1)
    others = [make_path(price=100.0 + i, overall=0.9) for i in range(5)]
    cfg = OptimizerConfig(random_seed=1, max_optimization_paths=3)
    result = PathOptimizer(cfg).optimize(others + [cheapest], strategy=OptimizationStrategy.PRICE_FIRST)

    assert len(result.paths) == 3
    assert result.paths[0].path_id == cheapest.path_id
    assert [p.total_price for p in result.paths] == [50.0, 100.0, 101.0]


ZERO_WEIGHTS = {"price": 0.0, "inventory": 0.0, "length": 0.0, "reliability": 0.0, "speed": 0.0}


def test_zero_weights_fall_back_to_attribute_order(make_path):
    d = make_path(price=90, stock=5, length=4)
    c = make_path(price=100, stock=30, length=1)
    a = make_path(price=100, stock=30, length=2)
    e = make_path(price=100, stock=10, length=1, reliability=0.99)
    b = make_path(price=100, stock=10, length=1, reliability=0.95)

    result = PathOptimizer(OptimizerConfig(random_seed=1)).optimize(
        [b, a, e, c, d], strategy=OptimizationStrategy.CUSTOM, weights=ZERO_WEIGHTS
    )

    assert {p.overall_score for p in result.paths} == {0.0}
    # price, then stock, then length, then reliability
    assert [p.path_id for p in result.paths] == [x.path_id for x in (d, c, a, e, b)]


def test_balanced_runs_genetic_search(make_path):
    paths = _candidates(make_path)
    result = PathOptimizer(OptimizerConfig(random_seed=11)).optimize(paths, strategy=OptimizationStrategy.BALANCED)

    assert result.algorithm == "genetic_algorithm_optimization"
    assert 1 <= result.statistics.generations <= 10
    assert result.paths
    for p in result.paths:
        assert 0.0 <= p.overall_score <= 1.0
        assert p.total_length == len(p.nodes) - 1
    # every synthetic offspring points back at a discovered path
    discovered = {p.path_id for p in paths}
    assert all(p.source_path_id in discovered for p in result.paths)
    # the inputs are never modified
    assert all(p.metadata.algorithm == "path_finder_bfs" for p in paths)


def test_balanced_is_reproducible_with_seed(make_path):
    paths = _candidates(make_path)
    a = PathOptimizer(OptimizerConfig(random_seed=5)).optimize(paths)
    b = PathOptimizer(OptimizerConfig(random_seed=5)).optimize(paths)
    assert [(p.total_price, p.available_stock) for p in a.paths] == [
        (p.total_price, p.available_stock) for p in b.paths
    ]


def test_unexpected_fault_is_wrapped(make_path, monkeypatch):
    opt = PathOptimizer(OptimizerConfig(random_seed=1))

    def boom(*args, **kwargs):
        raise RuntimeError("scorer exploded")

    monkeypatch.setattr(opt.genetic, "run", boom)
    with pytest.raises(OptimizationFailedError) as exc_info:
        opt.optimize(_candidates(make_path), strategy=OptimizationStrategy.BALANCED)

    assert exc_info.value.details["strategy"] == "balanced"
    assert exc_info.value.details["buyer_id"] == "B1"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert opt.metrics.errors == 1


def test_crossover_returns_new_value(make_path):
    ga = GeneticSearch(GeneticConfig(), rng=np.random.default_rng(0))
    a = make_path(price=80, stock=10, length=1, overall=0.9)
    b = make_path(price=120, stock=30, length=3, overall=0.4)

    child = ga.crossover(a, b, OptimizationWeights())

    assert child.path_id.startswith("crossover_")
    assert child.total_price == pytest.approx(100.0)
    assert child.available_stock == 30
    assert child.nodes == a.nodes
    assert child.total_length == 1
    assert child.overall_score == pytest.approx(0.65)
    assert child.metadata.parent_ids == (a.path_id, b.path_id)
    assert child.metadata.algorithm == "genetic_crossover"
    assert child.source_path_id == a.path_id
    assert child.is_synthetic
    assert a.total_price == 80 and b.total_price == 120


def test_mutation_perturbs_one_objective(make_path):
    ga = GeneticSearch(GeneticConfig(mutation_scale=0.2), rng=np.random.default_rng(4))
    scores = ObjectiveScores(price=0.5, inventory=0.5, length=0.5, reliability=0.5, speed=0.5)
    parent = make_path(price=100, scores=scores)

    child = ga.mutate(parent)

    assert child.path_id.startswith("mutated_")
    assert child.total_price == parent.total_price
    assert parent.scores == scores
    changed = [name for name in ("price", "inventory", "length", "reliability")
               if getattr(child.scores, name) != getattr(scores, name)]
    assert len(changed) <= 1
    for name in changed:
        assert abs(getattr(child.scores, name) - 0.5) <= 0.1
    assert child.overall_score == pytest.approx(child.scores.objective_mean())


def test_genetic_search_converges_on_uniform_population(make_path):
    cfg = GeneticConfig(mutation_rate=0.0)
    ga = GeneticSearch(cfg, rng=np.random.default_rng(0))
    scores = ObjectiveScores(0.6, 0.6, 0.6, 0.6, 0.6)
    population = [make_path(price=100, scores=scores) for _ in range(6)]

    outcome = ga.run(population, OptimizationWeights())

    assert outcome.converged
    assert outcome.generations == cfg.convergence_min_generation
    assert len(outcome.population) == 6
    assert len(outcome.best_history) == outcome.generations


def test_genetic_search_honours_deadline(make_path):
    ga = GeneticSearch(GeneticConfig(), rng=np.random.default_rng(0), clock=lambda: 100.0)
    outcome = ga.run(_candidates(make_path), OptimizationWeights(), deadline=50.0)
    assert outcome.timed_out
    assert outcome.generations == 1
    assert not outcome.converged


def test_health_check(make_path):
    opt = PathOptimizer(OptimizerConfig(random_seed=1))
    opt.optimize(_candidates(make_path), strategy=OptimizationStrategy.LENGTH_FIRST)
    assert opt.health_check() == {"healthy": True, "issues": []}
