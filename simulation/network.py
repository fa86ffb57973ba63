from __future__ import annotations

from typing import Optional

import numpy as np

from procurement.data_source import InMemoryAccountStore
from procurement.models import AccountRecord, AccountRole, UserLevel


def random_account_network(
    *,
    seed: int,
    n_accounts: int,
    n_products: int,
    supplier_link_prob: float = 0.05,
    stocked_prob: float = 0.35,
    product_prob: float = 0.6,
    min_stock: int = 5,
    max_stock: int = 60,
    min_base_price: float = 50.0,
    max_base_price: float = 500.0,
    min_hop_cost: float = 1.0,
    max_hop_cost: float = 3.0,
    buyer_ids: Optional[list[str]] = None,
) -> InMemoryAccountStore:
    """
    Builds a seeded random account network:
    - a random spanning tree as the team hierarchy (root is a DIRECTOR)
    - downline levels never exceed their upline's level
    - extra non-team supplier links to accounts of equal or higher level
    - per-product stock and prices; the root stocks every product and higher
      levels get cheaper (wholesale) quotes
    """
    if n_accounts < 1:
        raise ValueError("n_accounts must be >= 1")
    rng = np.random.default_rng(seed)

    ids = [f"A{i}" for i in range(n_accounts)]
    products = [f"P{i}" for i in range(n_products)]
    base_price = {p: float(rng.uniform(min_base_price, max_base_price)) for p in products}

    order = list(ids)
    rng.shuffle(order)
    records: dict[str, AccountRecord] = {}

    root = order[0]
    records[root] = AccountRecord(account_id=root, level=UserLevel.DIRECTOR, role=AccountRole.TEAM_LEADER)
    for i in range(1, len(order)):
        child = order[i]
        parent = records[order[int(rng.integers(0, i))]]
        level = UserLevel(max(int(UserLevel.NORMAL), int(parent.level) - int(rng.integers(0, 3))))
        records[child] = AccountRecord(
            account_id=child,
            level=level,
            role=AccountRole.TEAM_LEADER if level >= UserLevel.STAR_3 else AccountRole.BUYER,
            parent_id=parent.account_id,
            hop_cost=float(rng.uniform(min_hop_cost, max_hop_cost)),
            reliability=float(rng.uniform(0.7, 1.0)),
            response_time_hours=float(rng.uniform(0.5, 12.0)),
            commission_rate=float(rng.choice([0.03, 0.05, 0.08])),
            relay_fee=float(rng.uniform(0.0, 5.0)),
        )

    protected = set(buyer_ids or [])
    for rec in records.values():
        # STAR_3 and above always carry a catalogue; lower levels only sometimes
        if rec.account_id in protected:
            continue
        if rec.level < UserLevel.STAR_3 and float(rng.random()) >= stocked_prob:
            continue
        for p in products:
            if rec.account_id != root and float(rng.random()) >= product_prob:
                continue
            markup = 1.0 + 0.05 * (int(UserLevel.DIRECTOR) - int(rec.level))
            rec.stock[p] = int(rng.integers(min_stock, max_stock + 1))
            rec.prices[p] = round(base_price[p] * markup * float(rng.uniform(0.95, 1.05)), 2)
        if rec.stock and rec.role == AccountRole.BUYER:
            rec.role = AccountRole.SELLER

    # Extra supplier links
    for i in range(len(ids)):
        for j in range(len(ids)):
            if i == j:
                continue
            a, b = records[ids[i]], records[ids[j]]
            if b.account_id == a.parent_id or b.level < a.level:
                continue
            if float(rng.random()) < supplier_link_prob:
                a.supplier_links[b.account_id] = float(rng.uniform(min_hop_cost, max_hop_cost))

    return InMemoryAccountStore(records.values())


def leaf_buyers(store: InMemoryAccountStore) -> list[str]:
    """Accounts nobody sources from through the team hierarchy."""
    parents = {store.get(a).parent_id for a in store.account_ids()}
    return [a for a in store.account_ids() if a not in parents]
