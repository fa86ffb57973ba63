#!/usr/bin/env python3
"""
Quick demo: build a random account network, optimize one purchase and plot it.
"""

import argparse
import asyncio
import logging
import os
import sys

# Add project root to path
if __package__ is None:
    _ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if _ROOT not in sys.path:
        sys.path.insert(0, _ROOT)

from procurement.config import NetworkConfig, OptimizerConfig  # noqa: E402
from procurement.errors import PathNotFoundError  # noqa: E402
from procurement.models import OptimizationStrategy, RequestOptions  # noqa: E402
from procurement.optimizer import SupplyChainPathOptimizer  # noqa: E402
from simulation.network import leaf_buyers, random_account_network  # noqa: E402
from experiments.visualize import plot_account_network  # noqa: E402


async def run(args) -> None:
    store = random_account_network(seed=args.seed, n_accounts=args.accounts, n_products=3)
    cfg = OptimizerConfig(random_seed=args.seed, network=NetworkConfig(auto_rebuild=False))
    buyer = leaf_buyers(store)[0]

    async with SupplyChainPathOptimizer(store, cfg) as engine:
        snap = engine.builder.snapshot
        print(f"Graph: {snap.node_count} accounts, {snap.edge_count} relationships")
        options = RequestOptions(strategy=OptimizationStrategy(args.strategy))
        try:
            result = await engine.find_multiple_paths(buyer, args.product, args.quantity, options)
        except PathNotFoundError:
            print(f"No path for buyer={buyer} product={args.product} qty={args.quantity}")
            plot_account_network(snap.g)
            return

        print(f"algorithm={result.algorithm} ranked={len(result.paths)} pareto={len(result.pareto_front)}")
        for p in result.paths[:5]:
            print(
                f"  {p.describe():<30} price={p.total_price:8.2f} stock={p.available_stock:3d} "
                f"hops={p.total_length} score={p.overall_score:.3f} [{p.metadata.algorithm}]"
            )
        best = result.best_paths.by_overall
        plot_account_network(snap.g, highlight=best.node_ids if best else None)


def main():
    p = argparse.ArgumentParser(description="Procurement path optimizer demo")
    p.add_argument("--seed", type=int, default=7)
    p.add_argument("--accounts", type=int, default=25)
    p.add_argument("--product", type=str, default="P0")
    p.add_argument("--quantity", type=int, default=3)
    p.add_argument("--strategy", type=str, default="balanced", choices=[s.value for s in OptimizationStrategy])
    args = p.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
