"""Compound filtering for the stock, entries, and exits views.

Each view combines its active dimensions with AND; a dimension holding
several accepted values (search terms, stock buckets) matches when any of
them does. Empty criteria are the identity filter.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import FrozenSet, Iterable, List, Mapping, Optional, Sequence, Union

from .constants import ALL_SUBWAREHOUSES, OPEN_ENDED_STOCK_BUCKET, STOCK_LEVEL_BUCKETS, TransactionType
from .data_manager import ProductRow, TransactionRow
from .ledger import StockRow


SearchInput = Union[str, Sequence[str]]
DateBound = Union[date, datetime, None]


@dataclass(frozen=True)
class FilterCriteria:
    """One set of filter values for a view."""

    search: SearchInput = ""
    subwarehouse: str = ALL_SUBWAREHOUSES
    stock_levels: FrozenSet[int] = frozenset()
    start: DateBound = None
    end: DateBound = None


EMPTY_CRITERIA = FilterCriteria()


def _search_terms(search: SearchInput) -> List[str]:
    if isinstance(search, str):
        return [search.casefold()] if search else []
    return [term.casefold() for term in search if term]


def matches_search(search: SearchInput, fields: Iterable[Optional[str]]) -> bool:
    """Case-insensitive substring match of any term against any field."""

    terms = _search_terms(search)
    if not terms:
        return True
    haystack = [value.casefold() for value in fields if value]
    return any(term in value for term in terms for value in haystack)


def matches_subwarehouse(selected: str, value: Optional[str]) -> bool:
    return selected == ALL_SUBWAREHOUSES or value == selected


def matches_stock_level(selected: FrozenSet[int], stock: int) -> bool:
    """Empty selection matches all; the top bucket means "at least that much"."""

    if not selected:
        return True
    if stock in selected and stock < OPEN_ENDED_STOCK_BUCKET:
        return True
    return OPEN_ENDED_STOCK_BUCKET in selected and stock >= OPEN_ENDED_STOCK_BUCKET


def _as_lower_bound(bound: DateBound) -> Optional[datetime]:
    if bound is None or isinstance(bound, datetime):
        return bound
    return datetime.combine(bound, time.min)


def _as_upper_bound(bound: DateBound) -> Optional[datetime]:
    if bound is None or isinstance(bound, datetime):
        return bound
    return datetime.combine(bound, time.max)


def _comparable(moment: datetime, reference: datetime) -> datetime:
    # naive bounds are compared against the wall-clock part of aware timestamps
    if moment.tzinfo is not None and reference.tzinfo is None:
        return moment.replace(tzinfo=None)
    if moment.tzinfo is None and reference.tzinfo is not None:
        return moment.replace(tzinfo=reference.tzinfo)
    return moment


def matches_date_range(start: DateBound, end: DateBound, moment: Optional[datetime]) -> bool:
    """Inclusive range check; a plain ``date`` bound covers the whole day.

    Transactions without a readable timestamp only match an unbounded range.
    """

    lower = _as_lower_bound(start)
    upper = _as_upper_bound(end)
    if lower is None and upper is None:
        return True
    if moment is None:
        return False
    if lower is not None and _comparable(moment, lower) < lower:
        return False
    if upper is not None and _comparable(moment, upper) > upper:
        return False
    return True


def validate_stock_levels(levels: Iterable[int]) -> FrozenSet[int]:
    """Return ``levels`` as a frozenset, rejecting values outside the buckets.

    Raises:
        ValueError: For a level that is not one of ``STOCK_LEVEL_BUCKETS``.
    """

    selected = frozenset(levels)
    unknown = selected.difference(STOCK_LEVEL_BUCKETS)
    if unknown:
        raise ValueError(f"Unknown stock level bucket(s): {sorted(unknown)}")
    return selected


def filter_stock(rows: Sequence[StockRow], criteria: FilterCriteria = EMPTY_CRITERIA) -> List[StockRow]:
    """Filter stock rows by search (name, id, subwarehouse), subwarehouse, and level."""

    return [
        row
        for row in rows
        if matches_search(criteria.search, (row.product_name, row.product_id, row.subwarehouse))
        and matches_subwarehouse(criteria.subwarehouse, row.subwarehouse)
        and matches_stock_level(criteria.stock_levels, row.stock)
    ]


def filter_entries(
    transactions: Sequence[TransactionRow],
    products: Mapping[str, ProductRow],
    criteria: FilterCriteria = EMPTY_CRITERIA,
) -> List[TransactionRow]:
    """Filter entry transactions by search (product name, id) and date range.

    Entries whose product is no longer in the catalog are left out.
    """

    result = []
    for transaction in transactions:
        if transaction.transaction_type != TransactionType.ENTRY.value:
            continue
        product = products.get(transaction.product_id)
        if product is None:
            continue
        if not matches_search(criteria.search, (product.product_name, product.product_id)):
            continue
        if not matches_date_range(criteria.start, criteria.end, transaction.date):
            continue
        result.append(transaction)
    return result


def filter_exits(
    transactions: Sequence[TransactionRow],
    products: Mapping[str, ProductRow],
    criteria: FilterCriteria = EMPTY_CRITERIA,
) -> List[TransactionRow]:
    """Filter exit transactions by search, subwarehouse, and date range.

    The search covers product name, product id, batch, and the exit's own
    subwarehouse. Exits whose product is no longer in the catalog are left
    out.
    """

    result = []
    for transaction in transactions:
        if transaction.transaction_type != TransactionType.EXIT.value:
            continue
        product = products.get(transaction.product_id)
        if product is None:
            continue
        fields = (product.product_name, product.product_id, transaction.batch, transaction.subwarehouse)
        if not matches_search(criteria.search, fields):
            continue
        if not matches_subwarehouse(criteria.subwarehouse, transaction.subwarehouse):
            continue
        if not matches_date_range(criteria.start, criteria.end, transaction.date):
            continue
        result.append(transaction)
    return result


@dataclass
class FilterPanel:
    """Staged and applied filter values for one view.

    Subwarehouse, stock-level, and date edits are staged and only take effect
    after :meth:`apply`. The search text is live and goes straight into both.
    """

    staged: FilterCriteria = field(default_factory=FilterCriteria)
    applied: FilterCriteria = field(default_factory=FilterCriteria)

    def set_search(self, search: SearchInput) -> None:
        self.staged = replace(self.staged, search=search)
        self.applied = replace(self.applied, search=search)

    def stage(self, **changes) -> FilterCriteria:
        """Update staged values; accepts the :class:`FilterCriteria` field names."""
        if "search" in changes:
            raise TypeError("search is applied immediately; use set_search()")
        if "stock_levels" in changes:
            changes["stock_levels"] = validate_stock_levels(changes["stock_levels"])
        self.staged = replace(self.staged, **changes)
        return self.staged

    def apply(self) -> FilterCriteria:
        self.applied = self.staged
        return self.applied

    def clear(self) -> None:
        self.staged = FilterCriteria(search=self.staged.search)
        self.applied = FilterCriteria(search=self.applied.search)
