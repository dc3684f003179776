"""Stock derivation and creation-time transaction rules.

Stock is never stored: it is folded from the full transaction log every time
it is needed. The validator consumes that figure to decide whether a new
movement may be committed; it never touches the log itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from . import log
from .constants import ALL_SUBWAREHOUSES, TransactionType
from .data_manager import ProductRow, TransactionRow


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product or transaction is unknown."""


class ValidationOutcome(str, Enum):
    """Result of checking a movement before it is committed."""

    OK = "Ok"
    MISSING_BATCH = "MissingBatch"
    INVALID_QUANTITY = "InvalidQuantity"
    INSUFFICIENT_STOCK = "InsufficientStock"


class TransactionRejected(BusinessRuleViolation):
    """Raised when a draft fails validation; carries the failing outcome."""

    def __init__(self, outcome: ValidationOutcome, message: str) -> None:
        super().__init__(message)
        self.outcome = outcome


@dataclass(frozen=True)
class TransactionDraft:
    """A movement that has not been committed yet (no id or timestamp)."""

    product_id: str
    transaction_type: TransactionType
    quantity: int
    batch: Optional[str] = None
    subwarehouse: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class StockRow:
    """A catalog product joined with its derived stock."""

    product_id: str
    product_name: str
    subwarehouse: str
    stock: int


def compute_stock(products: Iterable[ProductRow], transactions: Iterable[TransactionRow]) -> Dict[str, int]:
    """Derive current stock per product from the transaction log.

    Every known product starts at zero so products without movements are
    reported rather than omitted. Entries add their quantity, exits subtract
    it; the fold is order independent. Movements for product ids outside the
    catalog are accumulated separately and never returned.

    Args:
        products (Iterable[ProductRow]): Catalog whose ids define the output
            domain.
        transactions (Iterable[TransactionRow]): Full transaction log visible
            to the caller.

    Returns:
        dict[str, int]: Mapping of product id to signed stock.
    """

    stock: Dict[str, int] = {product.product_id: 0 for product in products}
    orphaned: Dict[str, int] = {}
    for transaction in transactions:
        bucket = stock if transaction.product_id in stock else orphaned
        delta = signed_quantity(transaction)
        bucket[transaction.product_id] = bucket.get(transaction.product_id, 0) + delta
    if orphaned:
        log.debug("Ignored movements for %d unknown product id(s)", len(orphaned))
    log.debug("Calculated stock for %d products", len(stock))
    return stock


def signed_quantity(transaction: TransactionRow) -> int:
    """Return ``+quantity`` for entries and ``-quantity`` for exits."""

    if transaction.transaction_type == TransactionType.ENTRY.value:
        return transaction.quantity
    if transaction.transaction_type == TransactionType.EXIT.value:
        return -transaction.quantity
    log.warning(
        "Transaction '%s' has unknown type '%s'; ignored for stock",
        transaction.transaction_id,
        transaction.transaction_type,
    )
    return 0


def products_with_stock(products: Sequence[ProductRow], stock: Mapping[str, int]) -> List[StockRow]:
    """Join catalog rows with their derived stock, keeping catalog order."""

    return [
        StockRow(
            product_id=product.product_id,
            product_name=product.product_name,
            subwarehouse=product.subwarehouse,
            stock=stock.get(product.product_id, 0),
        )
        for product in products
    ]


def unique_subwarehouses(products: Iterable[ProductRow]) -> List[str]:
    """Return the ``all`` sentinel followed by the sorted distinct subwarehouses."""

    names = {product.subwarehouse for product in products}
    return [ALL_SUBWAREHOUSES, *sorted(names)]


def is_positive_integer(value: object) -> bool:
    """True for ``int`` values above zero; ``bool`` does not count."""

    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_transaction(
    kind: TransactionType,
    quantity: object,
    current_stock: int,
    batch: Optional[str] = None,
) -> ValidationOutcome:
    """Decide whether a movement may be committed.

    Exits must name a batch; that check runs before the quantity checks. The
    sufficiency check compares against ``current_stock`` as passed in, so
    callers recompute the ledger immediately before validating.

    Args:
        kind (TransactionType): Entry or exit.
        quantity (object): Requested quantity; must be a positive ``int``.
        current_stock (int): Stock for the product at validation time.
        batch (str | None): Batch identifier; required for exits.

    Returns:
        ValidationOutcome: ``OK`` or the first failing rule.
    """

    if kind == TransactionType.EXIT and not (batch or "").strip():
        return ValidationOutcome.MISSING_BATCH
    if not is_positive_integer(quantity):
        return ValidationOutcome.INVALID_QUANTITY
    if kind == TransactionType.EXIT and quantity > current_stock:
        return ValidationOutcome.INSUFFICIENT_STOCK
    return ValidationOutcome.OK


def require_valid_transaction(draft: TransactionDraft, current_stock: int) -> None:
    """Raise :class:`TransactionRejected` unless ``draft`` validates.

    Raises:
        TransactionRejected: With a message suitable for showing the operator.
    """

    outcome = validate_transaction(
        draft.transaction_type,
        draft.quantity,
        current_stock,
        batch=draft.batch,
    )
    if outcome is ValidationOutcome.OK:
        return

    if outcome is ValidationOutcome.MISSING_BATCH:
        message = f"A batch is required to record an exit of product '{draft.product_id}'"
    elif outcome is ValidationOutcome.INVALID_QUANTITY:
        message = f"Quantity must be a positive whole number, got {draft.quantity!r}"
    else:
        message = (
            f"Insufficient stock for product '{draft.product_id}': "
            f"requested {draft.quantity}, available {current_stock}"
        )
    log.warning("Rejected %s for product '%s': %s", draft.transaction_type.name, draft.product_id, outcome.value)
    raise TransactionRejected(outcome, message)
