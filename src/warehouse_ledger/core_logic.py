"""Business logic layer for the warehouse ledger.

This module orchestrates the append-only transaction log stored in the master
workbook. It consumes the Data Access Layer (DAL) for all I/O and routes every
mutation through the pure ledger, import, and mark modules. Derived views are
never refreshed behind the caller's back: after a mutation the caller asks
for a fresh :class:`LedgerSnapshot` via :func:`recompute`.

Exit validation reads the stock, decides, and appends inside one call. That
sequence is not guarded across processes: two processes sharing a workbook
can both pass the sufficiency check and oversell. Single-writer use is
assumed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, TransactionType
from .import_reconciler import HeaderAliases, ImportSession, RowRecord, reconcile
from .ledger import (
    BusinessRuleViolation,
    MissingReferenceError,
    StockRow,
    TransactionDraft,
    TransactionRejected,
    ValidationOutcome,
    compute_stock,
    products_with_stock,
    require_valid_transaction,
    unique_subwarehouses,
    validate_transaction,
)
from .marks import MarkRegistry, WorkbookMarkStore
from .setup_excel import build_master_workbook


PersistenceError = data_manager.PersistenceError


class DuplicateProductError(BusinessRuleViolation):
    """Raised when a catalog product id is already taken."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL.

    ``degraded`` is set when the workbook could not be loaded and the context
    runs on a fallback catalog with an empty log; writes are refused.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    degraded: bool = False
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of the catalog, the log, and everything derived from them."""

    products: tuple[data_manager.ProductRow, ...]
    transactions: tuple[data_manager.TransactionRow, ...]
    stock: Dict[str, int]
    stock_rows: tuple[StockRow, ...]
    subwarehouses: tuple[str, ...]

    @property
    def product_lookup(self) -> Dict[str, data_manager.ProductRow]:
        return {product.product_id: product for product in self.products}


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time.

    Timestamps are wall-clock reads taken at commit time, so ordering by date
    is best-effort rather than a guarantee.
    """

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket (``all`` list and ``by_id`` map) on demand."""

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the transaction log cache bucket on demand.

    ``all`` keeps sheet order; ``by_date`` is the same rows ordered by
    timestamp for display.
    """

    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook))
        bucket["all"] = all_transactions
        bucket["by_date"] = sorted(all_transactions, key=lambda row: row.timestamp_iso)
        bucket["by_id"] = {transaction.transaction_id: transaction for transaction in all_transactions}
        log.debug("Populated transactions cache with %d entries", len(all_transactions))
    return bucket


def _ensure_marks(context: RuntimeContext) -> MarkRegistry:
    bucket = _get_cache_bucket(context, "marks")
    if "registry" not in bucket:
        bucket["registry"] = MarkRegistry.load(WorkbookMarkStore(context.workbook))
    return bucket["registry"]


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    When the configuration is readable but the workbook is not, the context
    falls back to the default catalog (``[Defaults] CatalogFile``) and an
    empty transaction log and is flagged ``degraded``.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context ready for orchestration functions.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    try:
        workbook = data_manager.open_workbook(settings.data_file)
    except (FileNotFoundError, PersistenceError) as exc:
        log.warning("Workbook unavailable (%s); starting in degraded mode", exc)
        return _degraded_context(settings, _default_catalog(settings))
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def _default_catalog(settings: data_manager.ConfigSettings) -> List[data_manager.ProductRow]:
    if settings.catalog_file is None:
        return []
    try:
        return data_manager.read_catalog_csv(settings.catalog_file)
    except (OSError, ValueError) as exc:
        log.warning("Default catalog '%s' unreadable: %s", settings.catalog_file, exc)
        return []


def _degraded_context(
    settings: data_manager.ConfigSettings,
    products: Sequence[data_manager.ProductRow],
) -> RuntimeContext:
    workbook = build_master_workbook(products=products)
    log.warning("Running with %d fallback product(s) and an empty log", len(products))
    return RuntimeContext(settings=settings, workbook=workbook, degraded=True)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return the catalog in sheet order (a copy of the cached list)."""
    return list(_ensure_products_cache(context)["all"])


def list_transactions(context: RuntimeContext, *, order_by_date: bool = True) -> List[data_manager.TransactionRow]:
    """Return the transaction log, ordered by date ascending unless told otherwise.

    Date ordering is best-effort: timestamps are wall-clock reads and are not
    guaranteed to follow append order.
    """
    cache = _ensure_transactions_cache(context)
    return list(cache["by_date"] if order_by_date else cache["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the catalog.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRow:
    """Retrieve a transaction row by its identifier.

    Raises:
        MissingReferenceError: If the log lacks the supplied identifier.
    """
    cache = _ensure_transactions_cache(context)
    try:
        return cache["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def calculate_stock(context: RuntimeContext) -> Dict[str, int]:
    """Compute stock per catalog product from the cached log."""
    return compute_stock(list_products(context), _ensure_transactions_cache(context)["all"])


def recompute(context: RuntimeContext) -> LedgerSnapshot:
    """Re-read the catalog and the log and return a fresh derived snapshot.

    Callers invoke this after any mutation; nothing else refreshes the views.
    """
    _invalidate_cache(context, "products", "transactions")
    products = list_products(context)
    transactions = list_transactions(context)
    stock = compute_stock(products, transactions)
    return LedgerSnapshot(
        products=tuple(products),
        transactions=tuple(transactions),
        stock=stock,
        stock_rows=tuple(products_with_stock(products, stock)),
        subwarehouses=tuple(unique_subwarehouses(products)),
    )


def _require_writable(context: RuntimeContext) -> None:
    if context.degraded:
        raise PersistenceError("Workbook is unavailable; the ledger is running read-only")


def _require_storable_text(**fields: Optional[str]) -> None:
    """Reject text the workbook cannot hold (ASCII control characters)."""
    for name, value in fields.items():
        if value and ILLEGAL_CHARACTERS_RE.search(value):
            log.warning("Rejected %s containing control characters: %r", name, value)
            raise BusinessRuleViolation(f"The {name.replace('_', ' ')} contains characters that cannot be stored: {value!r}")


def _persist_or_rollback(context: RuntimeContext, rollback: Callable[[], None]) -> None:
    """Save the workbook; on failure undo the in-memory change and re-raise."""
    try:
        persist_context(context)
    except PersistenceError:
        rollback()
        log.error("Rolled back in-memory workbook change after a failed save")
        raise


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None, sequence: Optional[int] = None) -> str:
    """Generate a sortable transaction identifier from a UTC timestamp.

    Returns:
        str: ``{prefix}{YYYYMMDDHHMMSSffffff}``, followed by ``-NNNN`` when a
            ``sequence`` is given (used for rows committed in one batch).
    """
    when = when or _resolve_timestamp(None)
    identifier = f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"
    if sequence is not None:
        identifier = f"{identifier}-{sequence:04d}"
    return identifier


def _claim_transaction_id(taken: set[str], moment: datetime, *, sequence: Optional[int] = None) -> str:
    """Return an id for ``moment`` that is not in ``taken`` and add it there.

    The ``-NNNN`` suffix is bumped past any id already present in the log.
    """
    transaction_id = generate_transaction_id(when=moment, sequence=sequence)
    bump = sequence or 0
    while transaction_id in taken:
        bump += 1
        transaction_id = generate_transaction_id(when=moment, sequence=bump)
    taken.add(transaction_id)
    return transaction_id


def build_transaction(
    draft: TransactionDraft,
    product: data_manager.ProductRow,
    *,
    transaction_id: str,
    timestamp: datetime,
) -> data_manager.TransactionRow:
    """Materialize a draft into a DAL transaction row.

    Exits keep their trimmed batch; entries never carry one. The subwarehouse
    defaults to the product's catalog subwarehouse.
    """
    is_exit = draft.transaction_type == TransactionType.EXIT
    return data_manager.TransactionRow(
        transaction_id=transaction_id,
        timestamp_iso=timestamp.isoformat(),
        transaction_type=draft.transaction_type.value,
        product_id=product.product_id,
        quantity=draft.quantity,
        batch=draft.batch.strip() if is_exit and draft.batch else None,
        subwarehouse=draft.subwarehouse or product.subwarehouse,
        notes=draft.notes or None,
    )


def record_transaction(
    context: RuntimeContext,
    draft: TransactionDraft,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRow:
    """Validate a draft against freshly computed stock and append it.

    Stock is recomputed from the log immediately before validation. A rejected
    draft never reaches the workbook.

    Returns:
        data_manager.TransactionRow: The persisted row.

    Raises:
        MissingReferenceError: If the product is not in the catalog.
        TransactionRejected: If the draft fails validation.
        BusinessRuleViolation: If a text field holds control characters.
        PersistenceError: If the workbook cannot be saved; the append is
            undone.
    """
    _require_writable(context)
    product = get_product(context, draft.product_id)
    _invalidate_cache(context, "transactions")
    current_stock = calculate_stock(context).get(product.product_id, 0)
    require_valid_transaction(draft, current_stock)
    _require_storable_text(batch=draft.batch, subwarehouse=draft.subwarehouse, notes=draft.notes)

    moment = _resolve_timestamp(timestamp)
    taken = set(_ensure_transactions_cache(context)["by_id"])
    transaction_id = _claim_transaction_id(taken, moment)
    transaction = build_transaction(
        draft,
        product,
        transaction_id=transaction_id,
        timestamp=moment,
    )
    row_count = data_manager.transaction_row_count(context.workbook)
    data_manager.append_transaction(context.workbook, transaction)
    _persist_or_rollback(context, lambda: data_manager.truncate_transactions(context.workbook, row_count))
    _invalidate_cache(context, "transactions")
    log.info(
        "Recorded %s transaction '%s' for product '%s' (quantity=%s, batch=%s)",
        draft.transaction_type.name,
        transaction.transaction_id,
        product.product_id,
        transaction.quantity,
        transaction.batch,
    )
    return transaction


def record_entry(context: RuntimeContext, product_id: str, quantity: int, *, notes: Optional[str] = None) -> data_manager.TransactionRow:
    """Append an entry movement for ``product_id``."""
    draft = TransactionDraft(product_id=product_id, transaction_type=TransactionType.ENTRY, quantity=quantity, notes=notes)
    return record_transaction(context, draft)


def record_exit(
    context: RuntimeContext,
    product_id: str,
    quantity: int,
    batch: Optional[str],
    *,
    notes: Optional[str] = None,
) -> data_manager.TransactionRow:
    """Append an exit movement; requires a batch and sufficient stock."""
    draft = TransactionDraft(
        product_id=product_id,
        transaction_type=TransactionType.EXIT,
        quantity=quantity,
        batch=batch,
        notes=notes,
    )
    return record_transaction(context, draft)


def delete_transaction(context: RuntimeContext, transaction_id: str) -> None:
    """Remove a transaction from the log.

    Marks that reference the id are left in place.

    Raises:
        MissingReferenceError: If the id is not in the log.
        PersistenceError: If the workbook cannot be saved; the row is restored.
    """
    _require_writable(context)
    try:
        row_index, values = data_manager.delete_transaction(context.workbook, transaction_id)
    except KeyError as exc:
        log.warning("Delete requested for unknown transaction '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc
    _persist_or_rollback(
        context,
        lambda: data_manager.restore_transaction(context.workbook, row_index, values),
    )
    _invalidate_cache(context, "transactions")
    log.info("Deleted transaction '%s'", transaction_id)


def header_aliases(context: RuntimeContext) -> HeaderAliases:
    """Alias table configured for this context."""
    return HeaderAliases(
        id_aliases=context.settings.id_aliases,
        quantity_aliases=context.settings.quantity_aliases,
    )


def reconcile_import(context: RuntimeContext, rows: Sequence[RowRecord]) -> ImportSession:
    """Reconcile decoded rows against the catalog and open a pending session."""
    lookup = _ensure_products_cache(context)["by_id"]
    outcome = reconcile(rows, lookup, header_aliases(context))
    log.info(
        "Reconciled %d import row(s): %d valid, %d error(s), %d skipped",
        outcome.total_rows,
        outcome.valid_count,
        len(outcome.errors),
        len(outcome.skipped_rows),
    )
    return ImportSession(outcome=outcome)


def import_file(context: RuntimeContext, path: Path) -> ImportSession:
    """Decode a CSV/XLSX file and reconcile its rows."""
    rows = data_manager.read_import_rows(path)
    return reconcile_import(context, rows)


def commit_import(
    context: RuntimeContext,
    drafts: Sequence[TransactionDraft],
    *,
    timestamp: Optional[datetime] = None,
) -> List[data_manager.TransactionRow]:
    """Append every draft in one save: either all land or none do.

    Raises:
        BusinessRuleViolation: If a draft is not an entry; nothing is written.
        MissingReferenceError: If a draft names a product no longer in the
            catalog; nothing is written.
        TransactionRejected: If a draft has an invalid quantity; nothing is
            written.
        PersistenceError: If the save fails; appended rows are removed.
    """
    _require_writable(context)
    moment = _resolve_timestamp(timestamp)
    taken = set(_ensure_transactions_cache(context)["by_id"])
    rows: List[data_manager.TransactionRow] = []
    for sequence, draft in enumerate(drafts, start=1):
        if draft.transaction_type != TransactionType.ENTRY:
            raise BusinessRuleViolation("Imports can only record entries")
        product = get_product(context, draft.product_id)
        outcome = validate_transaction(TransactionType.ENTRY, draft.quantity, 0)
        if outcome is not ValidationOutcome.OK:
            raise TransactionRejected(
                outcome,
                f"Quantity must be a positive whole number, got {draft.quantity!r} for product '{draft.product_id}'",
            )
        _require_storable_text(batch=draft.batch, subwarehouse=draft.subwarehouse, notes=draft.notes)
        rows.append(
            build_transaction(
                draft,
                product,
                transaction_id=_claim_transaction_id(taken, moment, sequence=sequence),
                timestamp=moment,
            )
        )

    row_count = data_manager.transaction_row_count(context.workbook)
    data_manager.append_transactions(context.workbook, rows)
    _persist_or_rollback(context, lambda: data_manager.truncate_transactions(context.workbook, row_count))
    _invalidate_cache(context, "transactions")
    log.info("Committed import batch of %d entr%s", len(rows), "y" if len(rows) == 1 else "ies")
    return rows


def confirm_import(context: RuntimeContext, session: ImportSession) -> List[data_manager.TransactionRow]:
    """Confirm a pending import session against this context."""
    return session.confirm(lambda drafts: commit_import(context, drafts))


def marked_ids(context: RuntimeContext) -> frozenset[str]:
    """Current marked transaction ids."""
    return _ensure_marks(context).ids


def is_marked(context: RuntimeContext, transaction_id: str) -> bool:
    return transaction_id in _ensure_marks(context)


def toggle_mark(context: RuntimeContext, transaction_id: str) -> frozenset[str]:
    """Flip the mark on ``transaction_id`` and persist the new set.

    The id is not checked against the log. On a failed save the stored and
    in-memory sets are left as they were.
    """
    _require_writable(context)
    registry = _ensure_marks(context)
    store = WorkbookMarkStore(context.workbook)
    previous = set(registry.ids)
    store.set_marked_ids(registry.toggled(transaction_id))
    _persist_or_rollback(context, lambda: store.set_marked_ids(previous))
    new_ids = registry.toggle(transaction_id)
    log.info(
        "%s transaction '%s' (%d marked)",
        "Marked" if transaction_id in new_ids else "Unmarked",
        transaction_id,
        len(new_ids),
    )
    return new_ids


def add_product(context: RuntimeContext, *, product_id: str, product_name: str, subwarehouse: str) -> data_manager.ProductRow:
    """Register a new catalog product.

    Raises:
        BusinessRuleViolation: If any field is blank or holds control
            characters.
        DuplicateProductError: If the id is already taken.
    """
    _require_writable(context)
    record = data_manager.ProductRow(
        product_id=(product_id or "").strip(),
        product_name=(product_name or "").strip(),
        subwarehouse=(subwarehouse or "").strip(),
    )
    if not (record.product_id and record.product_name and record.subwarehouse):
        raise BusinessRuleViolation("Product id, name, and subwarehouse are all required")
    _require_storable_text(product_id=record.product_id, product_name=record.product_name, subwarehouse=record.subwarehouse)
    if record.product_id in _ensure_products_cache(context)["by_id"]:
        log.warning("Rejected duplicate product id '%s'", record.product_id)
        raise DuplicateProductError(f"Product id '{record.product_id}' already exists")

    data_manager.append_product(context.workbook, record)
    _persist_or_rollback(context, lambda: data_manager.delete_product_row(context.workbook, record.product_id))
    _invalidate_cache(context, "products")
    log.info("Added product '%s' (%s)", record.product_id, record.subwarehouse)
    return record


def update_product(
    context: RuntimeContext,
    product_id: str,
    *,
    product_name: Optional[str] = None,
    subwarehouse: Optional[str] = None,
) -> data_manager.ProductRow:
    """Edit a product's name and/or subwarehouse; the id never changes."""
    _require_writable(context)
    current = get_product(context, product_id)
    changes: Dict[str, Any] = {}
    if product_name is not None:
        changes["ProductName"] = product_name.strip()
    if subwarehouse is not None:
        changes["Subwarehouse"] = subwarehouse.strip()
    if any(not value for value in changes.values()):
        raise BusinessRuleViolation("Product name and subwarehouse cannot be blank")
    if not changes:
        return current
    _require_storable_text(product_name=changes.get("ProductName"), subwarehouse=changes.get("Subwarehouse"))

    data_manager.update_product(context.workbook, current.product_id, field_values=changes)
    _persist_or_rollback(
        context,
        lambda: data_manager.update_product(
            context.workbook,
            current.product_id,
            field_values={"ProductName": current.product_name, "Subwarehouse": current.subwarehouse},
        ),
    )
    _invalidate_cache(context, "products")
    log.info("Updated product '%s': %s", current.product_id, ", ".join(sorted(changes)))
    return get_product(context, current.product_id)


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product from the catalog.

    Its transactions stay in the log; they drop out of the stock output and
    the entry/exit views because those are keyed on the catalog.
    """
    _require_writable(context)
    try:
        row_index, values = data_manager.delete_product_row(context.workbook, product_id)
    except KeyError as exc:
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc
    _persist_or_rollback(context, lambda: data_manager.restore_product(context.workbook, row_index, values))
    _invalidate_cache(context, "products")
    log.info("Deleted product '%s'", product_id)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file.

    Raises:
        PersistenceError: If the context is degraded or the save fails.
    """
    _require_writable(context)
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.debug("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk, dropping caches.

    If the reload fails the new context keeps the last-known catalog with an
    empty log and is flagged degraded.
    """
    try:
        workbook = data_manager.refresh_workbook(context.settings.data_file)
    except (FileNotFoundError, PersistenceError) as exc:
        log.warning("Reload of '%s' failed: %s", context.settings.data_file, exc)
        return _degraded_context(context.settings, list_products(context))
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
