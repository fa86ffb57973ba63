from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from procurement.errors import PathNotFoundError
from procurement.models import PathValidationResult, ProcurementPath, RequestOptions
from procurement.optimizer import SupplyChainPathOptimizer

logger = logging.getLogger(__name__)

PROFIT_MARGIN = 0.15
DEFAULT_COMMISSION_RATE = 0.05
STRONG_SCORE = 0.8

_ADVANTAGES = (
    ("price", "competitive price"),
    ("inventory", "ample stock"),
    ("length", "short supply chain"),
    ("reliability", "reliable supplier"),
)


@dataclass(frozen=True)
class PurchaseSuggestion:
    path: ProcurementPath
    recommendation: str
    score: float
    warnings: tuple[str, ...]


@dataclass(frozen=True)
class CommissionShare:
    account_id: str
    commission: float
    sales_volume: float


@dataclass(frozen=True)
class PurchaseImpact:
    path: ProcurementPath
    total_cost: float
    estimated_profit: float
    commissions: tuple[CommissionShare, ...]
    supplier_stock_after: int
    price_competitiveness: float
    inventory_health: float
    confidence: float

    @property
    def total_commission(self) -> float:
        return float(sum(c.commission for c in self.commissions))


def recommendation_text(path: ProcurementPath) -> str:
    reasons = [label for name, label in _ADVANTAGES if getattr(path.scores, name) > STRONG_SCORE]
    if not reasons:
        return "balanced overall fit"
    return "recommended for: " + "; ".join(reasons)


def recommendation_score(path: ProcurementPath, validation: PathValidationResult) -> float:
    score = path.overall_score
    if validation.warnings:
        score *= 0.9
    return float(score)


class PurchaseAdvisor:
    """
    Buyer-facing helpers on top of the optimizer: ranked suggestions and a
    what-if view of who earns what when a path is used.
    """

    def __init__(self, engine: SupplyChainPathOptimizer):
        self.engine = engine

    async def suggest(
        self,
        buyer_id: str,
        product_id: str,
        quantity: int,
        *,
        limit: int = 5,
        options: Optional[RequestOptions] = None,
    ) -> list[PurchaseSuggestion]:
        options = options or RequestOptions(max_paths=limit * 2)
        try:
            result = await self.engine.find_multiple_paths(buyer_id, product_id, quantity, options)
        except PathNotFoundError:
            logger.info(f"no suggestions buyer={buyer_id} product={product_id} qty={quantity}")
            return []

        suggestions: list[PurchaseSuggestion] = []
        shown = min(limit * 2, self.engine.config.max_pareto_solutions)
        for path in result.pareto_front[:shown]:
            if path.is_synthetic:
                continue
            validation = await self.engine.validate_path(path)
            if not validation.is_valid:
                continue
            suggestions.append(
                PurchaseSuggestion(
                    path=path,
                    recommendation=recommendation_text(path),
                    score=recommendation_score(path, validation),
                    warnings=validation.warnings,
                )
            )
            if len(suggestions) >= limit:
                break
        suggestions.sort(key=lambda s: -s.score)
        return suggestions

    async def simulate_purchase_impact(self, buyer_id: str, product_id: str, quantity: int) -> PurchaseImpact:
        path = await self.engine.find_optimal_path(buyer_id, product_id, quantity)
        if path is None:
            raise PathNotFoundError(
                "no path to simulate",
                details={"buyer_id": buyer_id, "product_id": product_id, "quantity": quantity},
            )
        return purchase_impact(path)


def purchase_impact(path: ProcurementPath) -> PurchaseImpact:
    """Commission goes to every relaying account between buyer and supplier."""
    shares = tuple(
        CommissionShare(
            account_id=n.account_id,
            commission=path.total_price * (n.commission_rate or DEFAULT_COMMISSION_RATE),
            sales_volume=path.total_price,
        )
        for n in path.nodes[1:-1]
    )
    return PurchaseImpact(
        path=path,
        total_cost=path.total_price,
        estimated_profit=path.total_price * PROFIT_MARGIN,
        commissions=shares,
        supplier_stock_after=max(0, path.available_stock - path.quantity),
        price_competitiveness=path.scores.price,
        inventory_health=path.scores.inventory,
        confidence=float((path.reliability + path.overall_score) / 2),
    )
