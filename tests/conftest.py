# tests/conftest.py
import sys
import uuid
from pathlib import Path

import pytest

# Put the repository root on sys.path so tests run without an install
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from procurement.config import BusinessRules, NetworkConfig, OptimizerConfig  # noqa: E402
from procurement.data_source import InMemoryAccountStore  # noqa: E402
from procurement.models import (  # noqa: E402
    AccountRecord,
    AccountRole,
    NodeRole,
    ObjectiveScores,
    OptimizationWeights,
    PathMetadata,
    PathNode,
    ProcurementPath,
    UserLevel,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock(1000.0)


@pytest.fixture()
def single_seller_store():
    """B1 buys from its team upline S1, which holds 10 units of P1 at 100."""
    return InMemoryAccountStore(
        [
            AccountRecord(account_id="S1", level=UserLevel.STAR_1, role=AccountRole.SELLER,
                          stock={"P1": 10}, prices={"P1": 100.0}),
            AccountRecord(account_id="B1", level=UserLevel.NORMAL, parent_id="S1", hop_cost=1.0),
        ]
    )


@pytest.fixture()
def chain_store():
    """
    Team chain B1 -> T1 -> T2 -> D1 (levels rising). T1 relays only,
    T2 and D1 hold P1; X1 is an unrelated seller with a direct supplier link
    from B1.
    """
    return InMemoryAccountStore(
        [
            AccountRecord(account_id="D1", level=UserLevel.DIRECTOR, role=AccountRole.TEAM_LEADER,
                          stock={"P1": 50, "P2": 3}, prices={"P1": 70.0, "P2": 20.0}, reliability=0.99),
            AccountRecord(account_id="T2", level=UserLevel.STAR_3, role=AccountRole.TEAM_LEADER, parent_id="D1",
                          hop_cost=2.0, stock={"P1": 8}, prices={"P1": 90.0}, relay_fee=3.0),
            AccountRecord(account_id="T1", level=UserLevel.VIP, parent_id="T2", hop_cost=1.0, relay_fee=2.0),
            AccountRecord(account_id="B1", level=UserLevel.NORMAL, parent_id="T1", hop_cost=1.0,
                          supplier_links={"X1": 1.5}),
            AccountRecord(account_id="X1", level=UserLevel.STAR_2, role=AccountRole.SELLER,
                          stock={"P1": 30}, prices={"P1": 60.0}),
        ]
    )


@pytest.fixture()
def three_supplier_store():
    """B1 has direct supplier links to S1/S2/S3 quoting P1 at 120/100/80."""
    return InMemoryAccountStore(
        [
            AccountRecord(account_id="S1", level=UserLevel.STAR_1, role=AccountRole.SELLER,
                          stock={"P1": 20}, prices={"P1": 120.0}),
            AccountRecord(account_id="S2", level=UserLevel.STAR_1, role=AccountRole.SELLER,
                          stock={"P1": 20}, prices={"P1": 100.0}),
            AccountRecord(account_id="S3", level=UserLevel.STAR_1, role=AccountRole.SELLER,
                          stock={"P1": 20}, prices={"P1": 80.0}),
            AccountRecord(account_id="B1", level=UserLevel.NORMAL,
                          supplier_links={"S1": 1.0, "S2": 1.0, "S3": 1.0}),
        ]
    )


@pytest.fixture()
def open_rules_config():
    """Supplier links allowed, no background rebuild, fixed seed."""
    return OptimizerConfig(
        random_seed=7,
        business_rules=BusinessRules(require_team_membership=False),
        network=NetworkConfig(auto_rebuild=False),
    )


@pytest.fixture()
def team_config():
    return OptimizerConfig(random_seed=7, network=NetworkConfig(auto_rebuild=False))


@pytest.fixture()
def make_path():
    """Factory for hand-made direct paths B1 -> <supplier>."""

    def _make(
        *,
        price: float,
        stock: int = 20,
        length: int = 1,
        reliability: float = 0.95,
        quantity: int = 5,
        supplier: str = None,
        scores: ObjectiveScores = None,
        overall: float = 0.5,
        delivery: float = 26.0,
    ) -> ProcurementPath:
        supplier = supplier or f"S{uuid.uuid4().hex[:4]}"
        relays = [f"R{i}" for i in range(length - 1)]
        ids = ["B1"] + relays + [supplier]
        nodes = []
        for i, a in enumerate(ids):
            role = NodeRole.BUYER if i == 0 else NodeRole.SUPPLIER if i == len(ids) - 1 else NodeRole.INTERMEDIATE
            nodes.append(
                PathNode(
                    account_id=a,
                    level=UserLevel.NORMAL if i == 0 else UserLevel.STAR_1,
                    role=role,
                    price=price if role == NodeRole.SUPPLIER else 0.0,
                    available_stock=stock if role == NodeRole.SUPPLIER else 0,
                    hop_cost=0.0 if i == 0 else 1.0,
                    reliability=reliability,
                    response_time_hours=2.0,
                    commission_rate=0.05,
                )
            )
        return ProcurementPath(
            path_id=f"path_{uuid.uuid4().hex[:12]}",
            buyer_id="B1",
            product_id="P1",
            quantity=quantity,
            nodes=tuple(nodes),
            total_price=price,
            total_length=length,
            available_stock=stock,
            estimated_delivery_hours=delivery,
            reliability=reliability,
            scores=scores or ObjectiveScores(0.5, 0.5, 0.5, reliability, 0.5),
            overall_score=overall,
            metadata=PathMetadata(
                algorithm="path_finder_bfs",
                weights=OptimizationWeights(),
                search_depth=10,
                alternative_paths=0,
            ),
        )

    return _make
