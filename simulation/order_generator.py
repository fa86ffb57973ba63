from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np
import simpy


@dataclass(frozen=True)
class PurchaseOrder:
    order_id: int
    created_time: float
    buyer_id: str
    product_id: str
    quantity: int


class OrderGenerator:
    """
    SimPy process that generates stochastic purchase requests.
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        buyer_ids: list[str],
        product_ids: list[str],
        interarrival_mean: float,
        qty_min: int,
        qty_max: int,
        seed: int,
    ):
        if not buyer_ids or not product_ids:
            raise ValueError("buyer_ids and product_ids must be non-empty")
        self.env = env
        self.buyer_ids = buyer_ids
        self.product_ids = product_ids
        self.interarrival_mean = float(interarrival_mean)
        self.qty_min = int(qty_min)
        self.qty_max = int(qty_max)
        self.rng = np.random.default_rng(seed)
        self._next_id = 0

    def sample_interarrival(self) -> float:
        # Exponential interarrival (Poisson process)
        return float(self.rng.exponential(self.interarrival_mean))

    def sample_quantity(self) -> int:
        return int(self.rng.integers(self.qty_min, self.qty_max + 1))

    def sample_buyer(self) -> str:
        return self.buyer_ids[int(self.rng.integers(0, len(self.buyer_ids)))]

    def sample_product(self) -> str:
        return self.product_ids[int(self.rng.integers(0, len(self.product_ids)))]

    def next_order(self) -> PurchaseOrder:
        order = PurchaseOrder(
            order_id=self._next_id,
            created_time=float(self.env.now),
            buyer_id=self.sample_buyer(),
            product_id=self.sample_product(),
            quantity=self.sample_quantity(),
        )
        self._next_id += 1
        return order

    def run(self, on_order: Callable[[PurchaseOrder], None]) -> simpy.events.Event:
        def _proc():
            while True:
                yield self.env.timeout(self.sample_interarrival())
                on_order(self.next_order())

        return self.env.process(_proc())
