from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from procurement.models import ObjectiveScores, OptimizationWeights, ProcurementPath

OBJECTIVES: tuple[str, ...] = ("price", "inventory", "length", "reliability")


def _clamp(x: float) -> float:
    return float(min(1.0, max(0.0, x)))


@dataclass(frozen=True)
class ScoreContext:
    """
    Normalization bounds shared by every path scored in one request.

    Price is normalized against the cheapest and dearest candidate, so scores
    are only comparable between paths scored with the same context.
    """

    min_price: float
    max_price: float
    max_depth: int = 10
    max_delivery_hours: float = 168.0

    @staticmethod
    def from_prices(prices: Iterable[float], *, max_depth: int, max_delivery_hours: float) -> "ScoreContext":
        prices = [float(p) for p in prices]
        if not prices:
            return ScoreContext(0.0, 0.0, max_depth=max_depth, max_delivery_hours=max_delivery_hours)
        return ScoreContext(min(prices), max(prices), max_depth=max_depth, max_delivery_hours=max_delivery_hours)


def price_score(total_price: float, ctx: ScoreContext) -> float:
    span = ctx.max_price - ctx.min_price
    if span <= 0:
        return 1.0
    return _clamp((ctx.max_price - total_price) / span)


def inventory_score(available_stock: int, quantity: int) -> float:
    if available_stock >= 2 * quantity:
        return 1.0
    if available_stock >= quantity:
        return 0.8
    return 0.3


def length_score(total_length: int, max_depth: int) -> float:
    if max_depth <= 0:
        return 1.0
    return _clamp(1.0 - (total_length - 1) / max_depth)


def speed_score(delivery_hours: float, max_delivery_hours: float) -> float:
    if max_delivery_hours <= 0:
        return 0.0
    return _clamp(1.0 - delivery_hours / max_delivery_hours)


def compute_scores(
    *,
    total_price: float,
    available_stock: int,
    quantity: int,
    total_length: int,
    delivery_hours: float,
    reliability: float,
    ctx: ScoreContext,
) -> ObjectiveScores:
    """
    Derives the five objective scores of a path from its attributes.

    Args:
        total_price: sum of per-hop prices along the path
        available_stock: stock held by the final source
        quantity: requested quantity
        total_length: hop count
        delivery_hours: estimated delivery time
        reliability: mean reliability of the supplier-side accounts
        ctx: normalization bounds for the request

    Returns:
        ObjectiveScores, each in [0, 1]
    """
    return ObjectiveScores(
        price=price_score(total_price, ctx),
        inventory=inventory_score(available_stock, quantity),
        length=length_score(total_length, ctx.max_depth),
        reliability=_clamp(reliability),
        speed=speed_score(delivery_hours, ctx.max_delivery_hours),
    )


def rescore(path: ProcurementPath, ctx: ScoreContext) -> ObjectiveScores:
    return compute_scores(
        total_price=path.total_price,
        available_stock=path.available_stock,
        quantity=path.quantity,
        total_length=path.total_length,
        delivery_hours=path.estimated_delivery_hours,
        reliability=path.reliability,
        ctx=ctx,
    )


def weighted_score(scores: ObjectiveScores, weights: OptimizationWeights) -> float:
    """Σ score_i × normalized weight_i; 0 when every weight is 0."""
    if weights.total <= 0:
        return 0.0
    w = weights.normalized()
    total = (
        scores.price * w.price
        + scores.inventory * w.inventory
        + scores.length * w.length
        + scores.reliability * w.reliability
        + scores.speed * w.speed
    )
    return _clamp(total)


def dominates(a: ProcurementPath, b: ProcurementPath) -> bool:
    """True if `a` is no worse than `b` on price, stock, length and reliability and better on one."""
    no_worse = (
        a.total_price <= b.total_price
        and a.available_stock >= b.available_stock
        and a.total_length <= b.total_length
        and a.reliability >= b.reliability
    )
    if not no_worse:
        return False
    return (
        a.total_price < b.total_price
        or a.available_stock > b.available_stock
        or a.total_length < b.total_length
        or a.reliability > b.reliability
    )


def pareto_front(paths: Sequence[ProcurementPath]) -> list[ProcurementPath]:
    """Non-dominated subset, in input order. O(n²), fine for bounded candidate sets."""
    front: list[ProcurementPath] = []
    for i, p in enumerate(paths):
        if not any(dominates(q, p) for j, q in enumerate(paths) if j != i):
            front.append(p)
    return front


def fallback_key(path: ProcurementPath) -> tuple:
    # price, inventory, length, reliability, then id for total order
    return (path.total_price, -path.available_stock, path.total_length, -path.reliability, path.path_id)


def overall_key(path: ProcurementPath) -> tuple:
    return (-path.overall_score,) + fallback_key(path)


def objective_key(objective: str):
    """Ranking key that orders by one objective first, then by overall score."""
    primary = {
        "price": lambda p: p.total_price,
        "inventory": lambda p: -p.available_stock,
        "length": lambda p: p.total_length,
        "reliability": lambda p: -p.reliability,
    }[objective]

    def _key(path: ProcurementPath) -> tuple:
        return (primary(path),) + overall_key(path)

    return _key
