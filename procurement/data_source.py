from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from procurement.models import AccountRecord


class AccountDataSource(ABC):
    """Upstream account/inventory store queried by the network builder."""

    @abstractmethod
    def fetch_accounts(self, account_ids: Optional[Iterable[str]] = None) -> list[AccountRecord]:
        """
        Returns account rows. With `account_ids`, returns only the rows that
        still exist among them; missing ids are deleted accounts.
        """


class InMemoryAccountStore(AccountDataSource):
    """
    Dictionary-backed data source.

    Returned records are deep copies, so a built graph never aliases rows that
    are later mutated through `allocate`/`restock`/`update`.
    """

    def __init__(self, accounts: Iterable[AccountRecord] = ()):
        self._accounts: dict[str, AccountRecord] = {}
        for rec in accounts:
            self.add(rec)

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._accounts

    def add(self, record: AccountRecord) -> None:
        self._accounts[record.account_id] = record

    def remove(self, account_id: str) -> None:
        del self._accounts[account_id]

    def get(self, account_id: str) -> AccountRecord:
        return self._accounts[account_id]

    def account_ids(self) -> list[str]:
        return list(self._accounts)

    def update(self, account_id: str, **changes) -> AccountRecord:
        rec = self._accounts[account_id]
        for k, v in changes.items():
            if not hasattr(rec, k):
                raise AttributeError(f"AccountRecord has no field {k!r}")
            setattr(rec, k, v)
        return rec

    def products(self) -> set[str]:
        out: set[str] = set()
        for rec in self._accounts.values():
            out.update(rec.prices)
        return out

    def fetch_accounts(self, account_ids: Optional[Iterable[str]] = None) -> list[AccountRecord]:
        if account_ids is None:
            rows = list(self._accounts.values())
        else:
            rows = [self._accounts[a] for a in account_ids if a in self._accounts]
        return copy.deepcopy(rows)

    # --- inventory helpers ---

    def set_stock(self, account_id: str, product_id: str, qty: int) -> None:
        self._accounts[account_id].stock[product_id] = int(qty)

    def set_price(self, account_id: str, product_id: str, price: float) -> None:
        self._accounts[account_id].prices[product_id] = float(price)

    def stock_of(self, account_id: str, product_id: str) -> int:
        return int(self._accounts[account_id].stock.get(product_id, 0))

    def allocate(self, account_id: str, product_id: str, qty: int) -> bool:
        """
        Decrements stock if possible.
        Returns True if allocated, False on stockout.
        """
        if qty <= 0:
            return True
        current = self.stock_of(account_id, product_id)
        if current >= qty:
            self.set_stock(account_id, product_id, current - qty)
            return True
        return False

    def restock(self, account_id: str, product_id: str, qty: int) -> None:
        if qty <= 0:
            return
        self.set_stock(account_id, product_id, self.stock_of(account_id, product_id) + qty)
