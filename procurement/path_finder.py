from __future__ import annotations

import logging
import math
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from itertools import islice
from typing import Any, Optional

import networkx as nx

from procurement.config import OptimizerConfig
from procurement.errors import validate_request
from procurement.metrics import PerformanceTracker
from procurement.models import (
    EdgeRelation,
    NodeRole,
    PathFindOptions,
    PathMetadata,
    PathNode,
    PathValidationResult,
    ProcurementPath,
    SearchStrategy,
    ValidationDetails,
)
from procurement.network_builder import NetworkBuilder, NetworkSnapshot
from procurement.scoring import ScoreContext, compute_scores, weighted_score

logger = logging.getLogger(__name__)

NodePath = tuple[str, ...]


class PathFinder:
    """
    Enumerates candidate procurement paths on the builder's current snapshot.

    A search reads exactly one snapshot from start to end; a rebuild that lands
    mid-search is picked up by the next call.
    """

    def __init__(self, builder: NetworkBuilder, config: Optional[OptimizerConfig] = None):
        self.builder = builder
        self.config = config or builder.config
        self.metrics = PerformanceTracker("path_finder", window=self.config.performance.sample_window)

    def find_paths(
        self,
        buyer_id: str,
        product_id: str,
        quantity: int,
        options: Optional[PathFindOptions] = None,
    ) -> list[ProcurementPath]:
        validate_request(buyer_id, product_id, quantity)
        options = options or PathFindOptions()
        with self.metrics.track():
            return self._find(self.builder.snapshot, buyer_id, product_id, quantity, options)

    def _find(
        self,
        snap: NetworkSnapshot,
        buyer_id: str,
        product_id: str,
        quantity: int,
        options: PathFindOptions,
    ) -> list[ProcurementPath]:
        rules = self.config.business_rules
        max_depth = options.max_depth or self.config.max_search_depth
        max_paths = options.max_paths or self.config.max_paths

        if not snap.has_account(buyer_id):
            logger.info(f"unknown buyer buyer={buyer_id} product={product_id}")
            return []
        if product_id not in snap.products():
            logger.info(f"unknown product buyer={buyer_id} product={product_id}")
            return []

        excluded = set(options.blacklisted_suppliers)
        if rules.enable_blacklist:
            excluded.update(rules.blacklisted_accounts)
        excluded.discard(buyer_id)
        view = snap.procurement_view(
            team_only=rules.require_team_membership,
            allow_cross_level=rules.allow_cross_level_transactions,
            excluded=excluded,
        )
        if buyer_id not in view:
            logger.info(f"buyer not eligible to purchase buyer={buyer_id} status={snap.account(buyer_id)['status']}")
            return []

        min_stock = quantity if rules.enforce_minimum_stock else 1
        sources = {
            n
            for n in view.nodes
            if n != buyer_id and self._is_source(snap, n, product_id, min_stock, options)
        }
        if not sources:
            return []

        # hops from every node to its nearest source; nodes that cannot reach one are pruned
        to_source = nx.multi_source_dijkstra_path_length(
            nx.reverse_view(view), sources, cutoff=max_depth, weight=lambda u, v, d: 1
        )
        deadline = time.monotonic() + (options.timeout_s or self.config.search_timeout_s)

        if options.search_strategy == SearchStrategy.DIJKSTRA:
            node_paths = self._k_shortest(view, buyer_id, sources, max_depth, max_paths, deadline)
        else:
            node_paths = self._expand(
                view,
                buyer_id,
                sources,
                to_source,
                max_depth,
                max_paths,
                deadline,
                depth_first=options.search_strategy == SearchStrategy.DFS,
            )

        paths = self._to_paths(snap, node_paths, product_id, quantity, max_depth, options.search_strategy)
        if options.preferred_suppliers:
            preferred = set(options.preferred_suppliers)
            paths.sort(key=lambda p: p.supplier_id not in preferred)
        logger.debug(
            f"paths found buyer={buyer_id} product={product_id} qty={quantity} "
            f"sources={len(sources)} paths={len(paths)}"
        )
        return paths

    @staticmethod
    def _is_source(snap: NetworkSnapshot, n: str, product_id: str, min_stock: int, options: PathFindOptions) -> bool:
        price = snap.price_of(n, product_id)
        if price is None or snap.stock_of(n, product_id) < min_stock:
            return False
        if options.min_supplier_level is not None and snap.account(n)["level"] < options.min_supplier_level:
            return False
        if options.price_range is not None:
            lo, hi = options.price_range
            if not lo <= price <= hi:
                return False
        return True

    @staticmethod
    def _expand(
        view: nx.DiGraph,
        buyer_id: str,
        sources: set[str],
        to_source: dict[str, int],
        max_depth: int,
        max_paths: int,
        deadline: float,
        *,
        depth_first: bool,
    ) -> list[NodePath]:
        found: list[NodePath] = []
        frontier: deque[NodePath] = deque([(buyer_id,)])
        while frontier and len(found) < max_paths:
            if time.monotonic() > deadline:
                logger.warning(f"path search timed out buyer={buyer_id} found={len(found)}")
                break
            path = frontier.pop() if depth_first else frontier.popleft()
            depth = len(path) - 1
            for nxt in view.successors(path[-1]):
                if nxt in path:
                    continue
                if depth + 1 + to_source.get(nxt, math.inf) > max_depth:
                    continue
                extended = path + (nxt,)
                if nxt in sources:
                    found.append(extended)
                    if len(found) >= max_paths:
                        break
                frontier.append(extended)
        return found

    @staticmethod
    def _k_shortest(
        view: nx.DiGraph,
        buyer_id: str,
        sources: set[str],
        max_depth: int,
        max_paths: int,
        deadline: float,
    ) -> list[NodePath]:
        scored: list[tuple[float, NodePath]] = []
        for target in sorted(sources):
            try:
                for p in islice(nx.shortest_simple_paths(view, buyer_id, target, weight="hop_cost"), max_paths):
                    if len(p) - 1 <= max_depth:
                        scored.append((nx.path_weight(view, p, "hop_cost"), tuple(p)))
                    if time.monotonic() > deadline:
                        break
            except nx.NetworkXNoPath:
                continue
            if time.monotonic() > deadline:
                logger.warning(f"path search timed out buyer={buyer_id} found={len(scored)}")
                break
        scored.sort(key=lambda c: (c[0], len(c[1]), c[1]))
        return [p for _, p in scored[:max_paths]]

    def _to_paths(
        self,
        snap: NetworkSnapshot,
        node_paths: list[NodePath],
        product_id: str,
        quantity: int,
        max_depth: int,
        search_strategy: SearchStrategy,
    ) -> list[ProcurementPath]:
        raw: list[dict[str, Any]] = []
        for node_path in node_paths:
            nodes: list[PathNode] = []
            delivery = 0.0
            for i, a in enumerate(node_path):
                d = snap.account(a)
                if i == 0:
                    role, price, hop_cost = NodeRole.BUYER, 0.0, 0.0
                else:
                    quote, _, hop_cost = snap.hop_offer(node_path[i - 1], a, product_id)
                    is_last = i == len(node_path) - 1
                    role = NodeRole.SUPPLIER if is_last else NodeRole.INTERMEDIATE
                    price = float(quote) if is_last else d["relay_fee"]
                    delivery += hop_cost * self.config.hours_per_hop + d["response_time_hours"]
                nodes.append(
                    PathNode(
                        account_id=a,
                        level=d["level"],
                        role=role,
                        price=price,
                        available_stock=snap.stock_of(a, product_id),
                        hop_cost=hop_cost,
                        reliability=d["reliability"],
                        response_time_hours=d["response_time_hours"],
                        commission_rate=d["commission_rate"],
                    )
                )
            upstream = nodes[1:]
            raw.append(
                {
                    "nodes": tuple(nodes),
                    "total_price": float(sum(n.price for n in upstream)),
                    "available_stock": nodes[-1].available_stock,
                    "delivery": float(delivery),
                    "reliability": float(sum(n.reliability for n in upstream) / len(upstream)),
                }
            )

        ctx = ScoreContext.from_prices(
            (r["total_price"] for r in raw),
            max_depth=max_depth,
            max_delivery_hours=self.config.max_delivery_hours,
        )
        weights = self.config.default_weights
        calculated_at = datetime.now(timezone.utc)
        out: list[ProcurementPath] = []
        for r in raw:
            total_length = len(r["nodes"]) - 1
            scores = compute_scores(
                total_price=r["total_price"],
                available_stock=r["available_stock"],
                quantity=quantity,
                total_length=total_length,
                delivery_hours=r["delivery"],
                reliability=r["reliability"],
                ctx=ctx,
            )
            out.append(
                ProcurementPath(
                    path_id=f"path_{uuid.uuid4().hex[:12]}",
                    buyer_id=r["nodes"][0].account_id,
                    product_id=product_id,
                    quantity=quantity,
                    nodes=r["nodes"],
                    total_price=r["total_price"],
                    total_length=total_length,
                    available_stock=r["available_stock"],
                    estimated_delivery_hours=r["delivery"],
                    reliability=r["reliability"],
                    scores=scores,
                    overall_score=weighted_score(scores, weights),
                    metadata=PathMetadata(
                        algorithm=f"path_finder_{search_strategy.value}",
                        weights=weights,
                        search_depth=max_depth,
                        alternative_paths=len(raw) - 1,
                        calculated_at=calculated_at,
                    ),
                )
            )
        return out

    def validate_path(self, path: ProcurementPath) -> PathValidationResult:
        """
        Re-checks a previously discovered path against the current snapshot.
        Never raises for an infeasible path; every problem becomes a reason.
        """
        start = time.perf_counter()
        snap = self.builder.snapshot
        rules = self.config.business_rules
        reasons: list[str] = []
        warnings: list[str] = []
        ids = path.node_ids

        is_complete = len(ids) >= 2 and ids[0] == path.buyer_id and path.nodes[-1].role == NodeRole.SUPPLIER
        if not is_complete:
            reasons.append("path must run from the buyer to a supplier")
        if len(set(ids)) != len(ids):
            reasons.append("path visits an account more than once")

        missing = [a for a in ids if not snap.has_account(a)]
        for a in missing:
            reasons.append(f"account {a} no longer exists")
        for a in ids:
            if a not in missing and not snap.is_active(a):
                reasons.append(f"account {a} is not active")

        continuity = team_ok = level_ok = True
        checked_edges = 0
        for u, v in zip(ids, ids[1:]):
            checked_edges += 1
            if u in missing or v in missing:
                continuity = False
                continue
            if not snap.are_connected(u, v):
                continuity = False
                reasons.append(f"no procurement relationship {u}->{v}")
                continue
            if rules.require_team_membership and snap.edge(u, v)["relation"] != EdgeRelation.TEAM:
                team_ok = False
                reasons.append(f"{v} is not in the team upline of {u}")
            if not rules.allow_cross_level_transactions and snap.account(v)["level"] < snap.account(u)["level"]:
                level_ok = False
                reasons.append(f"{u} may not source from lower-level account {v}")

        blacklisted = [a for a in ids[1:] if rules.enable_blacklist and a in rules.blacklisted_accounts]
        for a in blacklisted:
            reasons.append(f"account {a} is blacklisted")

        stock_ok = price_ok = True
        supplier = ids[-1] if ids else None
        if supplier is not None and supplier not in missing:
            current_stock = snap.stock_of(supplier, path.product_id)
            if current_stock < path.quantity:
                msg = f"supplier {supplier} holds {current_stock} < {path.quantity}"
                if rules.enforce_minimum_stock:
                    stock_ok = False
                    reasons.append(msg)
                else:
                    warnings.append(msg)
            current_price = snap.price_of(supplier, path.product_id)
            if current_price is None:
                price_ok = False
                reasons.append(f"supplier {supplier} no longer offers {path.product_id}")
            elif not math.isclose(current_price, path.nodes[-1].price):
                warnings.append(f"price changed from {path.nodes[-1].price} to {current_price}")
        if path.total_price <= 0:
            price_ok = False
            reasons.append("total price must be positive")

        details = ValidationDetails(
            level_compliance=level_ok,
            team_relationship=team_ok,
            inventory_check=stock_ok,
            price_validation=price_ok,
            path_continuity=continuity,
        )
        return PathValidationResult(
            is_valid=not reasons,
            is_complete=is_complete,
            has_valid_permissions=level_ok and team_ok and not blacklisted,
            has_sufficient_stock=stock_ok,
            reasons=tuple(reasons),
            warnings=tuple(warnings),
            details=details,
            validated_at=datetime.now(timezone.utc),
            validation_time_ms=(time.perf_counter() - start) * 1000.0,
            checked_nodes=len(ids),
            checked_edges=checked_edges,
        )

    def health_check(self) -> dict[str, Any]:
        issues: list[str] = []
        if self.metrics.error_rate > 0.1:
            issues.append(f"error rate {self.metrics.error_rate:.0%} above 10%")
        if self.metrics.average_ms > self.config.performance.slow_response_ms:
            issues.append(f"average response {self.metrics.average_ms:.0f}ms above threshold")
        return {"healthy": not issues, "issues": issues}
