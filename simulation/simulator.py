from __future__ import annotations

import argparse
import asyncio
import csv
import logging
import os
import sys
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

import numpy as np
import simpy

# Allow running as a script: `python simulation/simulator.py`
if __package__ is None:  # pragma: no cover
    _ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if _ROOT not in sys.path:
        sys.path.insert(0, _ROOT)

from procurement.config import NetworkConfig, OptimizerConfig  # noqa: E402
from procurement.errors import SupplyChainError  # noqa: E402
from procurement.events import EventType  # noqa: E402
from procurement.models import OptimizationStrategy, ProcurementPath  # noqa: E402
from procurement.optimizer import SupplyChainPathOptimizer  # noqa: E402
from simulation.network import leaf_buyers, random_account_network  # noqa: E402
from simulation.order_generator import OrderGenerator, PurchaseOrder  # noqa: E402

logger = logging.getLogger(__name__)


@dataclass
class SimConfig:
    seed: int = 7
    sim_horizon: float = 500.0

    # Network
    n_accounts: int = 40
    n_products: int = 5
    supplier_link_prob: float = 0.05
    min_stock: int = 5
    max_stock: int = 60

    # Demand
    interarrival_mean: float = 4.0
    qty_min: int = 1
    qty_max: int = 8

    # Restocking
    restock_interval: float = 48.0
    restock_qty: int = 20

    # Optimizer
    strategy: OptimizationStrategy = OptimizationStrategy.BALANCED

    # Logging
    log_dir: str = "data/logs"


@dataclass
class OrderLogRow:
    order_id: int
    created_time: float
    delivered_time: Optional[float]
    buyer_id: str
    product_id: str
    quantity: int
    supplier_id: Optional[str]
    path: Optional[str]
    path_length: int
    total_price: float
    overall_score: float
    algorithm: Optional[str]
    delivery_hours: float
    latency_ms: float
    cache_hit: int
    stockout: int
    error: Optional[str]


class ProcurementSimulator:
    """
    Procurement demand simulator:
    - Generates purchase requests from leaf buyers
    - Asks the optimizer for the best path and allocates stock at its supplier
    - Pushes stock changes back through incremental network updates
    - Simulates delivery time with SimPy
    - Logs per-request metrics
    """

    def __init__(self, cfg: SimConfig):
        self.cfg = cfg
        self.env = simpy.Environment()
        self.store = random_account_network(
            seed=cfg.seed,
            n_accounts=cfg.n_accounts,
            n_products=cfg.n_products,
            supplier_link_prob=cfg.supplier_link_prob,
            min_stock=cfg.min_stock,
            max_stock=cfg.max_stock,
        )
        self.buyers = leaf_buyers(self.store)
        self.products = sorted(self.store.products())

        engine_cfg = OptimizerConfig(
            default_strategy=cfg.strategy,
            random_seed=cfg.seed,
            # the simulator pushes every stock change itself
            network=NetworkConfig(auto_rebuild=False),
        )
        self.loop = asyncio.new_event_loop()
        self.engine = SupplyChainPathOptimizer(self.store, engine_cfg)
        self.loop.run_until_complete(self.engine.start())
        self._cache_hits = 0
        self.engine.on(EventType.CACHE_HIT, self._on_cache_hit)

        self.order_gen = OrderGenerator(
            env=self.env,
            buyer_ids=self.buyers,
            product_ids=self.products,
            interarrival_mean=cfg.interarrival_mean,
            qty_min=cfg.qty_min,
            qty_max=cfg.qty_max,
            seed=cfg.seed + 1,
        )
        self.rng = np.random.default_rng(cfg.seed + 2)

        self.order_logs: list[OrderLogRow] = []

        # Summary counters
        self.n_orders = 0
        self.n_stockouts = 0
        self.n_errors = 0
        self.total_spend = 0.0

    def _on_cache_hit(self, _event) -> None:
        self._cache_hits += 1

    def _row(
        self,
        order: PurchaseOrder,
        *,
        path: Optional[ProcurementPath],
        latency_ms: float,
        cache_hit: bool,
        delivered_time: Optional[float] = None,
        stockout: bool = False,
        error: Optional[str] = None,
    ) -> OrderLogRow:
        return OrderLogRow(
            order_id=order.order_id,
            created_time=order.created_time,
            delivered_time=delivered_time,
            buyer_id=order.buyer_id,
            product_id=order.product_id,
            quantity=order.quantity,
            supplier_id=path.supplier_id if path else None,
            path=path.describe() if path else None,
            path_length=path.total_length if path else 0,
            total_price=float(path.total_price) if path else 0.0,
            overall_score=float(path.overall_score) if path else 0.0,
            algorithm=path.metadata.algorithm if path else None,
            delivery_hours=float(path.estimated_delivery_hours) if path else 0.0,
            latency_ms=float(latency_ms),
            cache_hit=int(cache_hit),
            stockout=int(stockout),
            error=error,
        )

    def on_order(self, order: PurchaseOrder) -> None:
        self.n_orders += 1
        hits_before = self._cache_hits
        start = time.perf_counter()
        try:
            path = self.loop.run_until_complete(
                self.engine.find_optimal_path(order.buyer_id, order.product_id, order.quantity)
            )
        except SupplyChainError as exc:
            self.n_errors += 1
            self.order_logs.append(
                self._row(order, path=None, latency_ms=(time.perf_counter() - start) * 1000.0,
                          cache_hit=False, stockout=True, error=exc.kind.value)
            )
            return
        latency_ms = (time.perf_counter() - start) * 1000.0
        cache_hit = self._cache_hits > hits_before

        # Stockout: nothing can fulfill right now, or a cached path went stale
        if path is None or not self.store.allocate(path.supplier_id, order.product_id, order.quantity):
            self.n_stockouts += 1
            self.order_logs.append(
                self._row(order, path=path, latency_ms=latency_ms, cache_hit=cache_hit, stockout=True)
            )
            return

        self.loop.run_until_complete(self.engine.update_network([path.supplier_id]))
        self.total_spend += float(path.total_price)
        self.env.process(self._delivery_process(order, path, latency_ms, cache_hit))

    def _delivery_process(self, order: PurchaseOrder, path: ProcurementPath, latency_ms: float, cache_hit: bool):
        yield self.env.timeout(float(path.estimated_delivery_hours))
        self.order_logs.append(
            self._row(
                order,
                path=path,
                latency_ms=latency_ms,
                cache_hit=cache_hit,
                delivered_time=float(self.env.now),
            )
        )

    def _restock_process(self):
        while True:
            yield self.env.timeout(self.cfg.restock_interval)
            holders = [a for a in self.store.account_ids() if self.store.get(a).prices]
            if not holders:
                continue
            account = holders[int(self.rng.integers(0, len(holders)))]
            for product in self.store.get(account).prices:
                self.store.restock(account, product, self.cfg.restock_qty)
            self.loop.run_until_complete(self.engine.update_network([account]))

    def run(self) -> None:
        self.order_gen.run(self.on_order)
        self.env.process(self._restock_process())
        try:
            self.env.run(until=float(self.cfg.sim_horizon))
        finally:
            self.close()

    def close(self) -> None:
        if self.loop.is_closed():
            return
        self.loop.run_until_complete(self.engine.destroy())
        self.loop.close()

    def write_logs(self) -> str:
        os.makedirs(self.cfg.log_dir, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        out_path = os.path.join(self.cfg.log_dir, f"procurement_orders_{ts}.csv")

        # Stable column order
        fieldnames = list(OrderLogRow.__dataclass_fields__.keys())
        with open(out_path, "w", newline="") as f:
            w = csv.DictWriter(f, fieldnames=fieldnames)
            w.writeheader()
            for row in sorted(self.order_logs, key=lambda r: r.order_id):
                w.writerow(asdict(row))
        return out_path

    def print_summary(self) -> None:
        delivered = sum(1 for r in self.order_logs if r.stockout == 0)
        cache_hits = sum(r.cache_hit for r in self.order_logs)
        avg_latency = (
            sum(r.latency_ms for r in self.order_logs) / len(self.order_logs) if self.order_logs else 0.0
        )
        print("=== Procurement Simulator Summary ===")
        print(f"sim_horizon={self.cfg.sim_horizon} strategy={self.cfg.strategy.value}")
        print(f"orders={self.n_orders} delivered={delivered} stockouts={self.n_stockouts} errors={self.n_errors}")
        print(f"total_spend={self.total_spend:.2f} cache_hits={cache_hits}")
        print(f"avg_latency_ms={avg_latency:.2f}")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="SimPy procurement demand simulator driving the path optimizer.")
    p.add_argument("--seed", type=int, default=7)
    p.add_argument("--horizon", type=float, default=500.0)
    p.add_argument("--accounts", type=int, default=40)
    p.add_argument("--products", type=int, default=5)
    p.add_argument(
        "--strategy",
        type=str,
        default=OptimizationStrategy.BALANCED.value,
        choices=[s.value for s in OptimizationStrategy],
    )
    p.add_argument("--log-dir", type=str, default="data/logs")
    p.add_argument("--verbose", action="store_true")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = SimConfig(
        seed=args.seed,
        sim_horizon=args.horizon,
        n_accounts=args.accounts,
        n_products=args.products,
        strategy=OptimizationStrategy(args.strategy),
        log_dir=args.log_dir,
    )
    sim = ProcurementSimulator(cfg)
    sim.run()
    sim.print_summary()
    out_path = sim.write_logs()
    print(f"wrote_logs={out_path}")


if __name__ == "__main__":
    main()
