"""Operator bookkeeping marks on transaction ids.

The registry is an owned, versioned set with a single toggle operation.
Persisting it is someone else's job: :class:`MarkStore` describes the port and
:class:`WorkbookMarkStore` implements it over the workbook ``Metadata`` sheet.
Marks are never validated against the log and are not pruned when the
transaction they point at is deleted.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, Protocol, Set

from openpyxl.workbook import Workbook

from . import data_manager


class MarkStore(Protocol):
    def get_marked_ids(self) -> Set[str]: ...

    def set_marked_ids(self, ids: Iterable[str]) -> None: ...


class WorkbookMarkStore:
    """:class:`MarkStore` backed by the workbook ``Metadata`` sheet."""

    def __init__(self, workbook: Workbook) -> None:
        self.workbook = workbook

    def get_marked_ids(self) -> Set[str]:
        return data_manager.get_marked_ids(self.workbook)

    def set_marked_ids(self, ids: Iterable[str]) -> None:
        data_manager.set_marked_ids(self.workbook, ids)


class MarkRegistry:
    def __init__(self, ids: Iterable[str] = (), version: int = 0) -> None:
        self._ids: FrozenSet[str] = frozenset(ids)
        self.version = version

    @classmethod
    def load(cls, store: MarkStore) -> "MarkRegistry":
        return cls(store.get_marked_ids())

    @property
    def ids(self) -> FrozenSet[str]:
        return self._ids

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def toggled(self, transaction_id: str) -> FrozenSet[str]:
        """Return the set that toggling ``transaction_id`` would produce."""
        if transaction_id in self._ids:
            return self._ids - {transaction_id}
        return self._ids | {transaction_id}

    def toggle(self, transaction_id: str) -> FrozenSet[str]:
        """Flip membership of ``transaction_id`` and return the new set."""
        self._ids = self.toggled(transaction_id)
        self.version += 1
        return self._ids

    def __repr__(self) -> str:
        return f"MarkRegistry(ids={sorted(self._ids)!r}, version={self.version})"
