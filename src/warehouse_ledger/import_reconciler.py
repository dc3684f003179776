"""Bulk-import reconciliation of spreadsheet rows into entry drafts.

Rows arrive already decoded as mappings of header to raw value. Each row is
classified as a valid entry candidate, a silent no-op (quantity 0), or an
error of a specific kind. Errors are collected for the whole batch; nothing
here raises for a bad row. The resulting :class:`ImportSession` holds the
operator's confirm/discard decision and hands the candidates to an
all-or-nothing commit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from . import log
from .constants import (
    DEFAULT_ID_ALIASES,
    DEFAULT_QUANTITY_ALIASES,
    IMPORT_FIRST_DATA_ROW,
    TransactionType,
)
from .data_manager import ProductRow, normalize_identifier
from .ledger import BusinessRuleViolation, TransactionDraft


RowRecord = Mapping[str, Any]

_INTEGER_PATTERN = re.compile(r"^[+-]?\d+(\.0*)?$")


class ErrorKind(str, Enum):
    """Reasons a row is rejected during reconciliation, in check order."""

    MISSING_ID_COLUMN = "MissingIdColumn"
    MISSING_QUANTITY_COLUMN = "MissingQuantityColumn"
    EMPTY_PRODUCT_ID = "EmptyProductId"
    UNKNOWN_PRODUCT = "UnknownProduct"
    INVALID_QUANTITY = "InvalidQuantity"


class ImportSessionError(BusinessRuleViolation):
    """Raised when a confirm or discard is requested in the wrong state."""


@dataclass(frozen=True)
class HeaderAliases:
    """Declarative table of accepted column headers for each imported field."""

    id_aliases: Tuple[str, ...] = DEFAULT_ID_ALIASES
    quantity_aliases: Tuple[str, ...] = DEFAULT_QUANTITY_ALIASES


DEFAULT_ALIASES = HeaderAliases()


@dataclass(frozen=True)
class ImportRowError:
    """A rejected row with its line number, reason, and untouched raw data."""

    row: int
    reason: ErrorKind
    raw: RowRecord
    detail: str = ""


@dataclass(frozen=True)
class ImportOutcome:
    """Partition of the input rows into candidates, errors, and skipped rows."""

    valid_candidates: Tuple[TransactionDraft, ...]
    errors: Tuple[ImportRowError, ...]
    skipped_rows: Tuple[int, ...]
    total_rows: int

    @property
    def valid_count(self) -> int:
        return len(self.valid_candidates)

    def summary(self) -> Dict[str, Any]:
        """Counts and reasons for the confirmation prompt."""
        return {
            "valid_count": self.valid_count,
            "skipped_count": len(self.skipped_rows),
            "errors": [{"row": error.row, "reason": error.reason.value} for error in self.errors],
        }


_MISSING = object()


def find_value(row: RowRecord, aliases: Sequence[str]) -> Any:
    """Return the value of the first alias present in ``row``.

    Row headers are trimmed and case-folded before comparison; when two
    headers normalise to the same name the later one wins. A header that is
    present with an empty or ``None`` value still counts as present.

    Returns:
        The raw value, or the module-level ``_MISSING`` sentinel when no alias
        matches.
    """

    normalized = {str(key).strip().casefold(): value for key, value in row.items()}
    for alias in aliases:
        key = alias.strip().casefold()
        if key in normalized:
            return normalized[key]
    return _MISSING


def parse_quantity(value: Any) -> Optional[int]:
    """Parse a raw quantity cell; ``None`` means it is not a non-negative integer.

    Blank cells count as zero. Whole-number floats coming from spreadsheets are
    accepted, as are strings such as ``"5"`` or ``"5.0"``.
    """

    if value is None:
        return 0
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        parsed = int(value)
    else:
        text = str(value).strip()
        if not text:
            return 0
        if not _INTEGER_PATTERN.match(text):
            return None
        parsed = int(text.split(".", 1)[0])
    return parsed if parsed >= 0 else None


def _classify_row(
    row: RowRecord,
    product_lookup: Mapping[str, ProductRow],
    aliases: HeaderAliases,
) -> Tuple[Optional[ErrorKind], str, Optional[ProductRow], int]:
    id_value = find_value(row, aliases.id_aliases)
    if id_value is _MISSING:
        return ErrorKind.MISSING_ID_COLUMN, "No product code column found", None, 0
    quantity_value = find_value(row, aliases.quantity_aliases)
    if quantity_value is _MISSING:
        return ErrorKind.MISSING_QUANTITY_COLUMN, "No quantity column found", None, 0

    product_id = normalize_identifier(id_value)
    if not product_id:
        return ErrorKind.EMPTY_PRODUCT_ID, "Product code is empty", None, 0

    product = product_lookup.get(product_id)
    if product is None:
        return ErrorKind.UNKNOWN_PRODUCT, f"Product '{product_id}' does not exist", None, 0

    quantity = parse_quantity(quantity_value)
    if quantity is None:
        return (
            ErrorKind.INVALID_QUANTITY,
            f"Quantity {quantity_value!r} is not a valid non-negative number",
            None,
            0,
        )
    return None, "", product, quantity


def reconcile(
    rows: Sequence[RowRecord],
    product_lookup: Mapping[str, ProductRow],
    aliases: HeaderAliases = DEFAULT_ALIASES,
) -> ImportOutcome:
    """Classify decoded rows into entry candidates, errors, and no-ops.

    Row numbers start at ``IMPORT_FIRST_DATA_ROW`` to match the line an
    operator sees in the source file. Each row stops at its first failing
    check; quantity 0 rows are skipped silently; everything else becomes an
    entry draft carrying the product's catalog subwarehouse.

    Args:
        rows (Sequence[Mapping[str, Any]]): Decoded rows in file order.
        product_lookup (Mapping[str, ProductRow]): Catalog keyed by product id.
        aliases (HeaderAliases): Accepted header names per field.

    Returns:
        ImportOutcome: Candidates, aggregated errors, and skipped row numbers.
    """

    candidates: List[TransactionDraft] = []
    errors: List[ImportRowError] = []
    skipped: List[int] = []

    for index, row in enumerate(rows):
        row_number = index + IMPORT_FIRST_DATA_ROW
        reason, detail, product, quantity = _classify_row(row, product_lookup, aliases)
        if reason is not None:
            errors.append(ImportRowError(row=row_number, reason=reason, raw=row, detail=detail))
            log.debug("Import row %d rejected: %s", row_number, detail)
            continue
        if quantity == 0:
            skipped.append(row_number)
            continue
        candidates.append(
            TransactionDraft(
                product_id=product.product_id,
                transaction_type=TransactionType.ENTRY,
                quantity=quantity,
                subwarehouse=product.subwarehouse,
            )
        )

    if errors:
        log.warning("Import found %d row(s) with problems", len(errors))
        for error in errors:
            log.warning("Row %d: %s (%s)", error.row, error.detail, error.reason.value)

    return ImportOutcome(
        valid_candidates=tuple(candidates),
        errors=tuple(errors),
        skipped_rows=tuple(skipped),
        total_rows=len(rows),
    )


class SessionState(str, Enum):
    PENDING = "pending"
    COMMITTING = "committing"
    COMMITTED = "committed"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass
class ImportSession:
    """Operator confirmation step between reconciliation and commit.

    The session can be discarded while pending. Once :meth:`confirm` starts
    the commit it can no longer be cancelled: the batch either lands in full
    (``COMMITTED``) or not at all (``FAILED``).
    """

    outcome: ImportOutcome
    state: SessionState = SessionState.PENDING
    committed: List[Any] = field(default_factory=list)

    @property
    def can_confirm(self) -> bool:
        return self.state is SessionState.PENDING and self.outcome.valid_count > 0

    def confirm(self, commit: Callable[[Sequence[TransactionDraft]], List[Any]]) -> List[Any]:
        """Commit every valid candidate through ``commit`` (all or nothing).

        Raises:
            ImportSessionError: If the session is not pending or has nothing
                to commit.
        """

        if self.state is not SessionState.PENDING:
            raise ImportSessionError(f"Import session is {self.state.value}; cannot confirm")
        if not self.outcome.valid_count:
            raise ImportSessionError("No valid entries to import")

        self.state = SessionState.COMMITTING
        try:
            self.committed = list(commit(self.outcome.valid_candidates))
        except Exception:
            self.state = SessionState.FAILED
            raise
        self.state = SessionState.COMMITTED
        return self.committed

    def discard(self) -> None:
        if self.state is not SessionState.PENDING:
            raise ImportSessionError(f"Import session is {self.state.value}; cannot discard")
        self.state = SessionState.DISCARDED
        log.info("Import discarded (%d valid row(s) dropped)", self.outcome.valid_count)
