"""Enumerations and defaults shared across the warehouse ledger modules.

The data access layer, the pure ledger/import/filter modules, and the CLI all
import their identifiers from here so the workbook labels and the import
header aliases have a single source of truth.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Sentinel accepted by every subwarehouse selector meaning "no restriction".
ALL_SUBWAREHOUSES = "all"

# Stock-level buckets offered by the stock view. The last one is open-ended.
STOCK_LEVEL_BUCKETS: tuple[int, ...] = (0, 1, 2, 3, 4, 5)
OPEN_ENDED_STOCK_BUCKET = STOCK_LEVEL_BUCKETS[-1]

# Header aliases recognised when importing entries from spreadsheets. Matching
# is case-insensitive and whitespace-trimmed; the first alias present wins.
DEFAULT_ID_ALIASES: tuple[str, ...] = ("código de item", "id", "item", "codigo")
DEFAULT_QUANTITY_ALIASES: tuple[str, ...] = ("cantidad", "quantity", "numero", "cant.")

# Import files carry a header row, so the first record is line 2.
IMPORT_FIRST_DATA_ROW = 2


class TransactionType(str, Enum):
    """Enumerate the movement kinds recorded in the transaction log."""

    ENTRY = "Entrada"
    EXIT = "Salida"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    TRANSACTIONS = "Transactions"
    METADATA = "Metadata"


# Metadata keys stored in the ``Metadata`` sheet.
MARKED_IDS_KEY = "MarkedTransactionIDs"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ALL_SUBWAREHOUSES",
    "STOCK_LEVEL_BUCKETS",
    "OPEN_ENDED_STOCK_BUCKET",
    "DEFAULT_ID_ALIASES",
    "DEFAULT_QUANTITY_ALIASES",
    "IMPORT_FIRST_DATA_ROW",
    "TransactionType",
    "SheetName",
    "MARKED_IDS_KEY",
]
