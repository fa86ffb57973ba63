from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import networkx as nx

from procurement.config import OptimizerConfig
from procurement.data_source import AccountDataSource
from procurement.errors import InconsistentDataError, NetworkNotBuiltError, SupplyChainError
from procurement.metrics import PerformanceTracker
from procurement.models import AccountRecord, AccountRole, AccountStatus, EdgeRelation, UserLevel

logger = logging.getLogger(__name__)


class NetworkSnapshot:
    """
    Read-only view over one built version of the procurement graph.

    Nodes are account ids carrying the account attributes; a directed edge
    u -> v means u may source from v. Edges carry 'relation', 'hop_cost' and
    the holder's per-product 'prices' and 'stock'. A snapshot is never
    mutated after it has been published by the builder.
    """

    def __init__(self, graph: nx.DiGraph, *, version: int, built_at: Optional[datetime] = None):
        self.g = graph
        self.version = version
        self.built_at = built_at or datetime.now(timezone.utc)

    @property
    def node_count(self) -> int:
        return self.g.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self.g.number_of_edges()

    def has_account(self, account_id: str) -> bool:
        return account_id in self.g

    def account(self, account_id: str) -> dict[str, Any]:
        return self.g.nodes[account_id]

    def is_active(self, account_id: str) -> bool:
        return self.g.nodes[account_id]["status"] == AccountStatus.ACTIVE

    def suppliers_of(self, account_id: str) -> list[str]:
        return list(self.g.successors(account_id))

    def edge(self, u: str, v: str) -> dict[str, Any]:
        return self.g.edges[u, v]

    def are_connected(self, u: str, v: str) -> bool:
        return self.g.has_edge(u, v)

    def stock_of(self, account_id: str, product_id: str) -> int:
        return int(self.g.nodes[account_id]["stock"].get(product_id, 0))

    def price_of(self, account_id: str, product_id: str) -> Optional[float]:
        price = self.g.nodes[account_id]["prices"].get(product_id)
        return None if price is None else float(price)

    def hop_offer(self, u: str, v: str, product_id: str) -> tuple[Optional[float], int, float]:
        """(price, stock, hop_cost) of sourcing `product_id` over the edge u -> v."""
        data = self.g.edges[u, v]
        price = data["prices"].get(product_id)
        return (
            None if price is None else float(price),
            int(data["stock"].get(product_id, 0)),
            float(data["hop_cost"]),
        )

    def holders_of(self, product_id: str, min_qty: int = 1) -> list[str]:
        return [
            n
            for n, d in self.g.nodes(data=True)
            if product_id in d["prices"] and int(d["stock"].get(product_id, 0)) >= min_qty
        ]

    def products(self) -> set[str]:
        out: set[str] = set()
        for _, d in self.g.nodes(data=True):
            out.update(d["prices"])
        return out

    def upline(self, account_id: str) -> list[str]:
        chain: list[str] = []
        parent = self.g.nodes[account_id]["parent_id"]
        while parent is not None and parent in self.g and parent not in chain:
            chain.append(parent)
            parent = self.g.nodes[parent]["parent_id"]
        return chain

    def procurement_view(
        self,
        *,
        team_only: bool,
        allow_cross_level: bool,
        exclude_inactive: bool = True,
        excluded: Iterable[str] = (),
    ) -> nx.DiGraph:
        """
        Filtered subgraph view containing only the hops a purchase may take.
        The view shares storage with the snapshot; no copy is made.
        """
        g = self.g
        excluded = frozenset(excluded)

        def _node_ok(n: str) -> bool:
            if n in excluded:
                return False
            return not exclude_inactive or g.nodes[n]["status"] == AccountStatus.ACTIVE

        def _edge_ok(u: str, v: str) -> bool:
            if team_only and g.edges[u, v]["relation"] != EdgeRelation.TEAM:
                return False
            return allow_cross_level or g.nodes[v]["level"] >= g.nodes[u]["level"]

        return nx.subgraph_view(g, filter_node=_node_ok, filter_edge=_edge_ok)


def _node_attrs(rec: AccountRecord) -> dict[str, Any]:
    return {
        "level": UserLevel(rec.level),
        "role": AccountRole(rec.role),
        "status": AccountStatus(rec.status),
        "parent_id": rec.parent_id,
        "supplier_links": dict(rec.supplier_links),
        "stock": {p: int(q) for p, q in rec.stock.items()},
        "prices": {p: float(v) for p, v in rec.prices.items()},
        "reliability": float(rec.reliability),
        "response_time_hours": float(rec.response_time_hours),
        "commission_rate": float(rec.commission_rate),
        "relay_fee": float(rec.relay_fee),
        "hop_cost": float(rec.hop_cost),
        "team_path": rec.account_id,
    }


def _add_out_edges(g: nx.DiGraph, account_id: str) -> None:
    data = g.nodes[account_id]
    targets: list[tuple[str, EdgeRelation, float]] = []
    if data["parent_id"] is not None:
        targets.append((data["parent_id"], EdgeRelation.TEAM, data["hop_cost"]))
    for supplier_id, cost in data["supplier_links"].items():
        if supplier_id != data["parent_id"]:
            targets.append((supplier_id, EdgeRelation.SUPPLY, float(cost)))
    for target, relation, cost in targets:
        if target not in g:
            raise InconsistentDataError(
                f"account {account_id} references unknown account {target}",
                details={"account_id": account_id, "target": target},
            )
        if target == account_id:
            raise InconsistentDataError(f"account {account_id} references itself", details={"account_id": account_id})
        holder = g.nodes[target]
        g.add_edge(
            account_id,
            target,
            relation=relation,
            hop_cost=float(cost),
            prices=holder["prices"],
            stock=holder["stock"],
        )


def _team_view(g: nx.DiGraph) -> nx.DiGraph:
    return nx.subgraph_view(g, filter_edge=lambda u, v: g.edges[u, v]["relation"] == EdgeRelation.TEAM)


def _check_team_cycles(g: nx.DiGraph) -> None:
    try:
        cycle = nx.find_cycle(_team_view(g))
    except nx.NetworkXNoCycle:
        return
    members = [u for u, _ in cycle]
    raise InconsistentDataError(f"circular team hierarchy: {'->'.join(members)}", details={"cycle": members})


def _assign_team_paths(g: nx.DiGraph, account_ids: Iterable[str]) -> None:
    for a in account_ids:
        chain = [a]
        parent = g.nodes[a]["parent_id"]
        while parent is not None:
            chain.append(parent)
            parent = g.nodes[parent]["parent_id"]
        g.nodes[a]["team_path"] = "/".join(reversed(chain))


def build_procurement_graph(records: Iterable[AccountRecord]) -> nx.DiGraph:
    """Builds a validated graph from account rows. Raises InconsistentDataError on bad data."""
    g = nx.DiGraph()
    for rec in records:
        if rec.account_id in g:
            raise InconsistentDataError(
                f"duplicate account id {rec.account_id}", details={"account_id": rec.account_id}
            )
        g.add_node(rec.account_id, **_node_attrs(rec))
    for a in list(g.nodes):
        _add_out_edges(g, a)
    _check_team_cycles(g)
    _assign_team_paths(g, g.nodes)
    return g


class NetworkBuilder:
    """
    Owns the current NetworkSnapshot and replaces it on rebuild.

    Both full and incremental rebuilds work on a fresh graph object and swap the
    snapshot reference at the end, so readers holding the old snapshot keep a
    consistent view. A failed rebuild leaves the previous snapshot in place.
    """

    def __init__(self, source: AccountDataSource, config: Optional[OptimizerConfig] = None):
        self.source = source
        self.config = config or OptimizerConfig()
        self.metrics = PerformanceTracker("network_builder", window=self.config.performance.sample_window)
        self._snapshot: Optional[NetworkSnapshot] = None
        self._version = 0
        self.last_error: Optional[str] = None
        self.last_build_ms = 0.0

    @property
    def is_built(self) -> bool:
        return self._snapshot is not None

    @property
    def version(self) -> int:
        return self._version

    @property
    def snapshot(self) -> NetworkSnapshot:
        snap = self._snapshot
        if snap is None:
            raise NetworkNotBuiltError("procurement network has not been built")
        return snap

    def build_graph(self) -> NetworkSnapshot:
        start = time.perf_counter()
        try:
            with self.metrics.track():
                g = build_procurement_graph(self.source.fetch_accounts())
        except SupplyChainError as exc:
            self.last_error = str(exc)
            logger.error(f"network build failed version={self._version} error={exc}")
            raise
        except Exception as exc:
            self.last_error = str(exc)
            logger.error(f"network build failed version={self._version} error={exc}")
            raise InconsistentDataError("failed to load account data", details={"error": str(exc)}) from exc
        return self._publish(g, start)

    def incremental_update(self, account_ids: Iterable[str]) -> NetworkSnapshot:
        current = self.snapshot
        ids = list(dict.fromkeys(account_ids))
        start = time.perf_counter()
        try:
            with self.metrics.track():
                g = self._splice(current.g, ids)
        except SupplyChainError as exc:
            self.last_error = str(exc)
            logger.warning(f"incremental update failed accounts={ids} error={exc}")
            raise
        except Exception as exc:
            self.last_error = str(exc)
            logger.warning(f"incremental update failed accounts={ids} error={exc}")
            raise InconsistentDataError(
                "incremental update could not be applied", details={"account_ids": ids, "error": str(exc)}
            ) from exc
        return self._publish(g, start)

    def _splice(self, base: nx.DiGraph, ids: list[str]) -> nx.DiGraph:
        fetched = {r.account_id: r for r in self.source.fetch_accounts(ids)}
        g = base.copy()

        for a in ids:
            if a not in fetched and a in g:
                g.remove_node(a)

        for a, rec in fetched.items():
            if a in g:
                g.remove_edges_from(list(g.out_edges(a)))
                g.nodes[a].update(_node_attrs(rec))
            else:
                g.add_node(a, **_node_attrs(rec))

        for a in fetched:
            _add_out_edges(g, a)
            holder = g.nodes[a]
            for u in list(g.predecessors(a)):
                g.edges[u, a].update(prices=holder["prices"], stock=holder["stock"])

        for n, d in g.nodes(data=True):
            parent = d["parent_id"]
            if parent is not None and parent not in g:
                raise InconsistentDataError(
                    f"account {n} lost its team upline {parent}", details={"account_id": n, "parent_id": parent}
                )

        _check_team_cycles(g)
        team = _team_view(g)
        affected: set[str] = set(fetched)
        for a in fetched:
            # team edges point child -> parent, so downline members are ancestors
            affected |= nx.ancestors(team, a)
        _assign_team_paths(g, affected)
        return g

    def _publish(self, g: nx.DiGraph, start: float) -> NetworkSnapshot:
        self._version += 1
        snap = NetworkSnapshot(g, version=self._version)
        self._snapshot = snap
        self.last_error = None
        self.last_build_ms = (time.perf_counter() - start) * 1000.0
        logger.info(
            f"network published version={snap.version} nodes={snap.node_count} "
            f"edges={snap.edge_count} build_ms={self.last_build_ms:.1f}"
        )
        return snap

    def health_check(self) -> dict[str, Any]:
        issues: list[str] = []
        if self._snapshot is None:
            issues.append("network not built")
        elif self._snapshot.node_count == 0:
            issues.append("network has no accounts")
        if self.last_error:
            issues.append(f"last rebuild failed: {self.last_error}")
        return {
            "healthy": not issues,
            "issues": issues,
            "version": self._version,
            "nodes": self._snapshot.node_count if self._snapshot else 0,
            "edges": self._snapshot.edge_count if self._snapshot else 0,
        }
