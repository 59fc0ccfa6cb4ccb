from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional

from periods import DateRange
from schemas import Transaction


ITEMS_PER_PAGE = 15


class SortKey(str, Enum):
    date = "date"
    amount = "amount"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


@dataclass(frozen=True)
class TransactionQuery:
    search: str = ""
    date_range: DateRange = field(default_factory=DateRange)
    sort_key: SortKey = SortKey.date
    sort_order: SortOrder = SortOrder.desc


@dataclass(frozen=True)
class TransactionPage:
    items: list[Transaction]
    page: int
    per_page: int
    total_items: int
    total_pages: int


def amount_text(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return repr(float(amount))


def matches_search(txn: Transaction, term: str) -> bool:
    if not term:
        return True
    needle = term.lower()
    haystacks = (txn.category, txn.notes or "", amount_text(txn.amount))
    return any(needle in text.lower() for text in haystacks)


def filter_transactions(
    transactions: Iterable[Transaction], query: TransactionQuery
) -> list[Transaction]:
    term = query.search.strip()
    return [
        txn
        for txn in transactions
        if query.date_range.contains(txn.date) and matches_search(txn, term)
    ]


def sort_transactions(
    transactions: Iterable[Transaction],
    key: SortKey = SortKey.date,
    order: SortOrder = SortOrder.desc,
) -> list[Transaction]:
    attr = "amount" if key == SortKey.amount else "date"
    return sorted(
        transactions,
        key=lambda t: getattr(t, attr),
        reverse=order == SortOrder.desc,
    )


def apply_query(
    transactions: Iterable[Transaction], query: TransactionQuery
) -> list[Transaction]:
    filtered = filter_transactions(transactions, query)
    return sort_transactions(filtered, query.sort_key, query.sort_order)


def page_count(total_items: int, per_page: int = ITEMS_PER_PAGE) -> int:
    return math.ceil(total_items / per_page) if total_items else 0


def paginate(
    items: list[Transaction], page: int = 1, per_page: int = ITEMS_PER_PAGE
) -> TransactionPage:
    page = max(1, page)
    start = (page - 1) * per_page
    return TransactionPage(
        items=items[start : start + per_page],
        page=page,
        per_page=per_page,
        total_items=len(items),
        total_pages=page_count(len(items), per_page),
    )


class TransactionBrowser:
    """
    Paged view over a live transaction list.

    Any change of search, range or sort puts the view back on page 1.
    """

    def __init__(
        self,
        query: Optional[TransactionQuery] = None,
        per_page: int = ITEMS_PER_PAGE,
    ) -> None:
        self.query = query or TransactionQuery()
        self.per_page = per_page
        self.current_page = 1
        self._transactions: list[Transaction] = []

    def set_transactions(self, transactions: list[Transaction]) -> None:
        self._transactions = list(transactions)
        last = max(1, self.total_pages)
        if self.current_page > last:
            self.current_page = last

    def update(self, **criteria) -> None:
        query = replace(self.query, **criteria)
        if query != self.query:
            self.query = query
            self.current_page = 1

    @property
    def results(self) -> list[Transaction]:
        return apply_query(self._transactions, self.query)

    @property
    def total_pages(self) -> int:
        return page_count(len(self.results), self.per_page)

    def next_page(self) -> None:
        if self.current_page < self.total_pages:
            self.current_page += 1

    def previous_page(self) -> None:
        if self.current_page > 1:
            self.current_page -= 1

    def page(self) -> TransactionPage:
        return paginate(self.results, self.current_page, self.per_page)
