import pytest

from procurement.errors import InvalidRequestError
from procurement.models import ObjectiveScores, OptimizationWeights
from procurement.scoring import (
    ScoreContext,
    compute_scores,
    dominates,
    inventory_score,
    length_score,
    pareto_front,
    price_score,
    speed_score,
    weighted_score,
)


def test_price_score_is_relative_to_candidates():
    ctx = ScoreContext.from_prices([80, 100, 120], max_depth=10, max_delivery_hours=168)
    assert price_score(80, ctx) == 1.0
    assert price_score(100, ctx) == pytest.approx(0.5)
    assert price_score(120, ctx) == 0.0


def test_price_score_with_single_price():
    ctx = ScoreContext.from_prices([100], max_depth=10, max_delivery_hours=168)
    assert price_score(100, ctx) == 1.0


def test_inventory_score_bands():
    assert inventory_score(10, 5) == 1.0
    assert inventory_score(7, 5) == 0.8
    assert inventory_score(4, 5) == 0.3


def test_length_and_speed_scores():
    assert length_score(1, 10) == 1.0
    assert length_score(6, 10) == pytest.approx(0.5)
    assert length_score(30, 10) == 0.0
    assert speed_score(0, 168) == 1.0
    assert speed_score(84, 168) == pytest.approx(0.5)
    assert speed_score(500, 168) == 0.0


def test_compute_scores_are_bounded():
    ctx = ScoreContext(min_price=50, max_price=150, max_depth=4, max_delivery_hours=100)
    s = compute_scores(
        total_price=75,
        available_stock=3,
        quantity=2,
        total_length=2,
        delivery_hours=50,
        reliability=1.2,
        ctx=ctx,
    )
    assert s == ObjectiveScores(price=0.75, inventory=0.8, length=0.75, reliability=1.0, speed=0.5)


def test_weighted_score_normalizes_weights():
    s = ObjectiveScores(price=1.0, inventory=0.0, length=0.0, reliability=0.0, speed=0.0)
    assert weighted_score(s, OptimizationWeights(2, 0, 0, 0, 0)) == pytest.approx(1.0)
    assert weighted_score(s, OptimizationWeights(1, 1, 0, 0, 0)) == pytest.approx(0.5)
    assert weighted_score(s, OptimizationWeights(0, 0, 0, 0, 0)) == 0.0


def test_dominance(make_path):
    cheap = make_path(price=80, stock=20, reliability=0.9)
    dear = make_path(price=100, stock=20, reliability=0.9)
    stocked = make_path(price=100, stock=40, reliability=0.9)
    assert dominates(cheap, dear)
    assert not dominates(dear, cheap)
    assert not dominates(cheap, stocked)
    assert not dominates(stocked, cheap)
    assert not dominates(cheap, cheap)


def test_pareto_front_properties(make_path):
    paths = [
        make_path(price=80, stock=10, length=2),
        make_path(price=100, stock=40, length=1),
        make_path(price=120, stock=10, length=2),  # dominated by the first
        make_path(price=90, stock=10, length=1),
        make_path(price=110, stock=30, length=3, reliability=0.99),
    ]
    front = pareto_front(paths)
    front_ids = {p.path_id for p in front}

    for p in front:
        assert not any(dominates(q, p) for q in paths)
    for p in paths:
        if p.path_id not in front_ids:
            assert any(dominates(f, p) for f in front)
    assert paths[2].path_id not in front_ids
    # input order is kept
    assert [p.path_id for p in front] == [p.path_id for p in paths if p.path_id in front_ids]


def test_weights_reject_negative_and_unknown_names():
    with pytest.raises(InvalidRequestError):
        OptimizationWeights(price=-0.1)
    with pytest.raises(InvalidRequestError):
        OptimizationWeights().merged({"cost": 1.0})
    merged = OptimizationWeights().merged({"price": 1.0, "speed": 0})
    assert merged.price == 1.0
    assert merged.speed == 0.0
    assert merged.inventory == OptimizationWeights().inventory
