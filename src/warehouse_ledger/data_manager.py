"""Data access layer for the warehouse ledger.

Everything that touches the master workbook, the configuration file, or an
import file lives here. Business rules belong elsewhere.

The public API is designed around five responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, deleting, or
   restoring individual rows.
4. Row decoding: turning CSV or XLSX import files into ordered row mappings
   for the import reconciler.
5. Report export: writing the stock, entries, and exits views to files.
"""


from __future__ import annotations

import configparser
import csv
import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from zipfile import BadZipFile

from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_ID_ALIASES,
    DEFAULT_QUANTITY_ALIASES,
    MARKED_IDS_KEY,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
METADATA_SHEET = SheetName.METADATA.value
REQUIRED_SHEETS = (PRODUCTS_SHEET, TRANSACTIONS_SHEET, METADATA_SHEET)

CSV_SUFFIXES = (".csv", ".txt")
XLSX_SUFFIXES = (".xlsx", ".xlsm")


class PersistenceError(Exception):
    """Raised when the workbook backend cannot complete a read or write."""


@dataclass(frozen=True)
class ConfigSettings:
    """Settings read from ``config.ini`` with paths already resolved."""

    data_file: Path
    warehouse_name: str
    schema_version: str
    id_aliases: Tuple[str, ...] = DEFAULT_ID_ALIASES
    quantity_aliases: Tuple[str, ...] = DEFAULT_QUANTITY_ALIASES
    catalog_file: Optional[Path] = None


@dataclass(frozen=True)
class ProductRow:
    """One catalog product as stored on the ``Products`` sheet."""

    product_id: str
    product_name: str
    subwarehouse: str


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet."""

    transaction_id: str
    timestamp_iso: str
    transaction_type: str
    product_id: str
    quantity: int
    batch: Optional[str] = None
    subwarehouse: Optional[str] = None
    notes: Optional[str] = None

    @property
    def date(self) -> Optional[datetime]:
        """Parse ``timestamp_iso``; ``None`` when the cell is blank or malformed."""
        if not self.timestamp_iso:
            return None
        try:
            return datetime.fromisoformat(self.timestamp_iso)
        except ValueError:
            return None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for
    ``CONFIG_FILE_NAME``; the first match that exists on disk wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _split_aliases(raw: str) -> Tuple[str, ...]:
    aliases = tuple(part.strip().casefold() for part in raw.split(","))
    return tuple(alias for alias in aliases if alias)


def _resolve_path(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The ``[Import]`` alias lists and the
    ``[Defaults] CatalogFile`` entry are optional; missing alias lists fall back
    to the built-in tables in :mod:`warehouse_ledger.constants`. Relative paths
    are anchored at ``base_path`` (or the working directory).

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If an alias list is present but empty.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        warehouse_name = parser.get("System", "WarehouseName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    id_aliases = DEFAULT_ID_ALIASES
    quantity_aliases = DEFAULT_QUANTITY_ALIASES
    if parser.has_option("Import", "IdAliases"):
        id_aliases = _split_aliases(parser.get("Import", "IdAliases"))
    if parser.has_option("Import", "QuantityAliases"):
        quantity_aliases = _split_aliases(parser.get("Import", "QuantityAliases"))
    if not id_aliases or not quantity_aliases:
        raise ValueError("Import alias lists must contain at least one header name")

    catalog_file = None
    if parser.has_option("Defaults", "CatalogFile"):
        catalog_file = _resolve_path(parser.get("Defaults", "CatalogFile"), base_path)

    return ConfigSettings(
        data_file=_resolve_path(data_file_raw, base_path),
        warehouse_name=warehouse_name,
        schema_version=schema_version,
        id_aliases=id_aliases,
        quantity_aliases=quantity_aliases,
        catalog_file=catalog_file,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and verify that every ledger sheet exists.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        PersistenceError: If the file is not a readable workbook or lacks one
            of the ledger sheets.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    try:
        wb = openpyxl.load_workbook(data_file)
    except (InvalidFileException, BadZipFile, OSError, KeyError, ValueError) as exc:
        raise PersistenceError(f"Unable to read workbook {data_file}: {exc}") from exc

    missing = [name for name in REQUIRED_SHEETS if name not in wb.sheetnames]
    if missing:
        raise PersistenceError(
            f"Workbook {data_file} is missing sheet(s): {', '.join(missing)}")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook by writing a sibling temp file and swapping it in.

    The replacement is a single ``os.replace`` so readers never observe a
    half-written workbook; either the previous file or the new one is on disk.

    Raises:
        PersistenceError: If the workbook cannot be written.
    """

    dest = Path(destination).expanduser().resolve()
    tmp = dest.with_name(f".{dest.name}.tmp")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(tmp)
        os.replace(tmp, dest)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        log.error("Failed to save workbook '%s': %s", dest, exc)
        raise PersistenceError(f"Unable to save workbook {dest}: {exc}") from exc


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_data_rows(sheet) -> Iterable[Tuple[int, Sequence[object]]]:
    for row_index, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield row_index, raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for _, raw in _iter_data_rows(workbook[PRODUCTS_SHEET]):
        yield deserialize_product(raw)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream transaction records from the ``Transactions`` worksheet in sheet order.

    Raises:
        PersistenceError: If a row holds a value that cannot be read back,
            such as a non-numeric quantity typed into the sheet by hand.
    """

    for row_index, raw in _iter_data_rows(workbook[TRANSACTIONS_SHEET]):
        try:
            record = deserialize_transaction(raw)
        except ValueError as exc:
            log.error("Unreadable transaction at sheet row %d: %s", row_index, exc)
            raise PersistenceError(f"{TRANSACTIONS_SHEET} row {row_index} is unreadable: {exc}") from exc
        yield record


def _append_row(workbook: Workbook, sheet_name: str, values: Sequence[object]) -> None:
    """Append ``values`` as one row; a failing cell write removes the partial row."""

    sheet = workbook[sheet_name]
    last_row = sheet.max_row
    try:
        sheet.append(list(values))
    except Exception:
        extra = sheet.max_row - last_row
        if extra > 0:
            sheet.delete_rows(last_row + 1, extra)
        raise


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    _append_row(workbook, PRODUCTS_SHEET, serialize_product(record))


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Args:
        workbook (Workbook): Workbook containing the products sheet.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Either every column is written or, when a cell rejects its value, the
    columns already changed are put back before the error propagates.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")

    sheet = workbook[PRODUCTS_SHEET]
    header_map = _header_map(sheet)

    for field in field_values:
        if field not in header_map:
            raise KeyError(f"Unknown product field: {field}")

    previous = {
        field: sheet.cell(row=row_index, column=header_map[field]).value
        for field in field_values
    }
    try:
        for field, value in field_values.items():
            sheet.cell(row=row_index, column=header_map[field]).value = value
    except Exception:
        for field, value in previous.items():
            sheet.cell(row=row_index, column=header_map[field]).value = value
        raise


def delete_product_row(workbook: Workbook, product_id: str) -> Tuple[int, List[object]]:
    """Remove a product row and return its position and values for rollback.

    Raises:
        KeyError: If the product cannot be found.
    """

    return _delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a transaction record to the ``Transactions`` worksheet.

    A value the worksheet refuses (for instance a control character in the
    notes) leaves no partial row behind.
    """

    _append_row(workbook, TRANSACTIONS_SHEET, serialize_transaction(record))


def transaction_row_count(workbook: Workbook) -> int:
    """Return the number of worksheet rows below the header, blank rows included."""

    return max(workbook[TRANSACTIONS_SHEET].max_row - 1, 0)


def truncate_transactions(workbook: Workbook, row_count: int) -> None:
    """Drop every transaction row after the first ``row_count`` data rows."""

    sheet = workbook[TRANSACTIONS_SHEET]
    first_extra = row_count + 2
    extra = sheet.max_row - first_extra + 1
    if extra > 0:
        sheet.delete_rows(first_extra, extra)


def append_transactions(workbook: Workbook, records: Sequence[TransactionRow]) -> int:
    """Append several transactions so that either all rows land or none do.

    Returns:
        int: Number of rows appended.
    """

    original_count = transaction_row_count(workbook)
    try:
        for record in records:
            append_transaction(workbook, record)
    except Exception:
        truncate_transactions(workbook, original_count)
        raise
    return len(records)


def delete_transaction(workbook: Workbook, transaction_id: str) -> Tuple[int, List[object]]:
    """Remove a transaction row and return its position and values.

    The returned pair can be handed to :func:`restore_transaction` when a
    later save fails and the deletion must be undone.

    Raises:
        KeyError: If the transaction cannot be found.
    """

    return _delete_row(workbook, TRANSACTIONS_SHEET, "TransactionID", transaction_id)


def restore_transaction(workbook: Workbook, row_index: int, values: Sequence[object]) -> None:
    """Re-insert a previously deleted transaction row at ``row_index``."""

    _restore_row(workbook, TRANSACTIONS_SHEET, row_index, values)


def restore_product(workbook: Workbook, row_index: int, values: Sequence[object]) -> None:
    """Re-insert a previously deleted product row at ``row_index``."""

    _restore_row(workbook, PRODUCTS_SHEET, row_index, values)


def get_marked_ids(workbook: Workbook) -> Set[str]:
    """Read the marked transaction id set from the ``Metadata`` sheet.

    Raises:
        PersistenceError: If the stored value is not a JSON list of ids.
    """

    row_index = locate_row(workbook, METADATA_SHEET, "Key", MARKED_IDS_KEY)
    if row_index is None:
        return set()
    raw = workbook[METADATA_SHEET].cell(row=row_index, column=2).value
    if raw in (None, ""):
        return set()
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Corrupt marked id list: {raw!r}") from exc
    if not isinstance(decoded, list):
        raise PersistenceError(f"Corrupt marked id list: {raw!r}")
    return {str(item) for item in decoded}


def set_marked_ids(workbook: Workbook, ids: Iterable[str]) -> None:
    """Store the marked transaction id set in the ``Metadata`` sheet."""

    payload = json.dumps(sorted(ids), ensure_ascii=False)
    sheet = workbook[METADATA_SHEET]
    row_index = locate_row(workbook, METADATA_SHEET, "Key", MARKED_IDS_KEY)
    if row_index is None:
        sheet.append([MARKED_IDS_KEY, payload])
    else:
        sheet.cell(row=row_index, column=2, value=payload)


def _header_map(sheet) -> Dict[object, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column. Both sides are
            trimmed and integral floats compared as whole numbers.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    wanted = normalize_identifier(key_value)

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and normalize_identifier(cell_value) == wanted:
            return row_idx

    return None


def _delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Tuple[int, List[object]]:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{key_column} not found: {key_value}")
    sheet = workbook[sheet_name]
    values = [cell.value for cell in sheet[row_index]]
    sheet.delete_rows(row_index, 1)
    return row_index, values


def _restore_row(workbook: Workbook, sheet_name: str, row_index: int, values: Sequence[object]) -> None:
    sheet = workbook[sheet_name]
    sheet.insert_rows(row_index, 1)
    for column_index, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column_index, value=value)


def serialize_product(record: ProductRow) -> list[object]:
    """Return ``[ProductID, ProductName, Subwarehouse]`` for worksheet insertion."""

    return [record.product_id, record.product_name, record.subwarehouse]


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction dataclass into the worksheet column order."""

    return [
        record.transaction_id,
        record.timestamp_iso,
        record.transaction_type,
        record.product_id,
        record.quantity,
        record.batch,
        record.subwarehouse,
        record.notes,
    ]


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _optional_text(value: object) -> Optional[str]:
    return None if value is None or value == "" else str(value)


def _cell_quantity(value: object) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"quantity is not a number: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"quantity is not a whole number: {value!r}")
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        number = float(text)
        if not number.is_integer():
            raise ValueError(f"quantity is not a whole number: {value!r}") from None
        return int(number)


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a product record.

    Identifiers are coerced to ``str`` so numeric-looking item codes typed into
    Excel compare equal to the codes used elsewhere.
    """

    product_id, product_name, subwarehouse = (list(raw_row) + [None] * 3)[:3]
    return ProductRow(
        product_id=normalize_identifier(product_id),
        product_name=_text(product_name),
        subwarehouse=_text(subwarehouse),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a transaction record.

    Quantities become ``int`` (blank cells read as 0) and optional text columns
    stay ``None`` when the sheet leaves them blank. A quantity that is not a
    whole number raises ``ValueError``.
    """

    (
        transaction_id,
        timestamp_iso,
        transaction_type,
        product_id,
        quantity_raw,
        batch,
        subwarehouse,
        notes,
    ) = (list(raw_row) + [None] * 8)[:8]

    if isinstance(timestamp_iso, datetime):
        timestamp_iso = timestamp_iso.isoformat()

    return TransactionRow(
        transaction_id=_text(transaction_id),
        timestamp_iso=_text(timestamp_iso),
        transaction_type=_text(transaction_type),
        product_id=normalize_identifier(product_id),
        quantity=_cell_quantity(quantity_raw),
        batch=_optional_text(batch),
        subwarehouse=_optional_text(subwarehouse),
        notes=_optional_text(notes),
    )


def normalize_identifier(value: object) -> str:
    """Render a raw cell value as a trimmed identifier string.

    Spreadsheet readers hand back whole numbers as ``float`` (``1234.0``); those
    are rendered without the fractional part so they match catalog codes.
    """

    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_import_rows(path: Path) -> List[Dict[str, object]]:
    """Decode a CSV or XLSX file into ordered row mappings keyed by header.

    Only the first worksheet of a workbook is read. Rows whose cells are all
    empty are dropped; header cells are passed through verbatim so alias
    matching stays with the reconciler.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the file extension is not supported.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Import file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in CSV_SUFFIXES:
        with path.open("r", newline="", encoding="utf-8-sig") as handle:
            reader = csv.DictReader(handle)
            rows = [
                {key: value for key, value in row.items() if key is not None}
                for row in reader
            ]
        return [row for row in rows if any(value not in (None, "") for value in row.values())]

    if suffix in XLSX_SUFFIXES:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
        try:
            sheet = wb.worksheets[0]
            rows_iter = sheet.iter_rows(values_only=True)
            header = next(rows_iter, None)
            if header is None:
                return []
            headers = [_text(cell) for cell in header]
            result: List[Dict[str, object]] = []
            for raw in rows_iter:
                if not any(cell is not None for cell in raw):
                    continue
                result.append({
                    name: value for name, value in zip(headers, raw) if name
                })
            return result
        finally:
            wb.close()

    raise ValueError(f"Unsupported import format '{suffix}'; expected CSV or XLSX")


def read_catalog_csv(path: Path) -> List[ProductRow]:
    """Load a fallback product catalog from a CSV with id/name/subwarehouse columns."""

    rows = read_import_rows(path)
    products: List[ProductRow] = []
    for row in rows:
        normalized = {str(key).strip().casefold(): value for key, value in row.items()}
        product_id = normalize_identifier(normalized.get("productid", normalized.get("id")))
        if not product_id:
            continue
        products.append(
            ProductRow(
                product_id=product_id,
                product_name=_text(normalized.get("productname", normalized.get("name"))).strip(),
                subwarehouse=_text(normalized.get("subwarehouse")).strip(),
            )
        )
    return products


STOCK_REPORT_NAME = "Reporte_Stock"
ENTRIES_REPORT_NAME = "Reporte_Entradas"
EXITS_REPORT_NAME = "Reporte_Salidas"
STOCK_REPORT_HEADERS = ("ITEM", "NOMBRE DEL PRODUCTO", "SUBALMACÉN", "STOCK ACTUAL")
ENTRIES_REPORT_HEADERS = ("FECHA", "ITEM", "NOMBRE DEL PRODUCTO", "CANTIDAD")
EXITS_REPORT_HEADERS = ("ITEM", "LOTE", "CANTIDAD")
REPORT_DATE_FORMAT = "DD/MM/YYYY"


def _report_workbook(title: str, headers: Sequence[str], widths: Sequence[int]) -> Workbook:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = title
    sheet.append(list(headers))
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for index, width in enumerate(widths, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = width
    return workbook


def export_stock_report(path: Path, stock_rows: Iterable[Any]) -> int:
    """Write the stock view to a one-sheet XLSX report.

    ``stock_rows`` are objects exposing ``product_id``, ``product_name``,
    ``subwarehouse`` and ``stock``, such as the ledger's stock rows.

    Returns:
        int: Number of data rows written.

    Raises:
        PersistenceError: If the file cannot be written.
    """

    workbook = _report_workbook(STOCK_REPORT_NAME, STOCK_REPORT_HEADERS, (14, 40, 20, 14))
    sheet = workbook.active
    count = 0
    for row in stock_rows:
        sheet.append([row.product_id, row.product_name, row.subwarehouse, row.stock])
        count += 1
    save_workbook(workbook, path)
    log.info("Exported %d stock row(s) to '%s'", count, path)
    return count


def export_entries_report(
    path: Path,
    transactions: Iterable[TransactionRow],
    product_names: Dict[str, str],
) -> int:
    """Write entry movements to a one-sheet XLSX report.

    ``FECHA`` holds the calendar date of the movement; a timestamp that cannot
    be parsed is written as the raw text. Products missing from
    ``product_names`` get an empty name.
    """

    workbook = _report_workbook(ENTRIES_REPORT_NAME, ENTRIES_REPORT_HEADERS, (12, 14, 40, 12))
    sheet = workbook.active
    count = 0
    for transaction in transactions:
        moment = transaction.date
        sheet.append(
            [
                moment.date() if moment is not None else transaction.timestamp_iso,
                transaction.product_id,
                product_names.get(transaction.product_id, ""),
                transaction.quantity,
            ]
        )
        if moment is not None:
            sheet.cell(row=sheet.max_row, column=1).number_format = REPORT_DATE_FORMAT
        count += 1
    save_workbook(workbook, path)
    log.info("Exported %d entry row(s) to '%s'", count, path)
    return count


def export_exits_report(path: Path, transactions: Iterable[TransactionRow]) -> int:
    """Write exit movements to a CSV report.

    The item code is written as an Excel text formula (``="0042"``) so
    spreadsheet programs keep leading zeros when the file is opened.

    Raises:
        PersistenceError: If the file cannot be written.
    """

    dest = Path(path).expanduser()
    count = 0
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        with dest.open("w", newline="", encoding="utf-8-sig") as handle:
            writer = csv.writer(handle)
            writer.writerow(EXITS_REPORT_HEADERS)
            for transaction in transactions:
                writer.writerow([f'="{transaction.product_id}"', transaction.batch or "", transaction.quantity])
                count += 1
    except OSError as exc:
        log.error("Failed to export exits report '%s': %s", dest, exc)
        raise PersistenceError(f"Unable to write report {dest}: {exc}") from exc
    log.info("Exported %d exit row(s) to '%s'", count, dest)
    return count
