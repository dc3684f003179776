"""Utility for initializing the warehouse ledger master workbook.

The module doubles as a script (``warehouse-setup``) and as a library used by
the business layer (in-memory fallback workbooks) and by tests.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from .data_manager import ProductRow, read_catalog_csv, serialize_product

# Column order must match data_manager.serialize_* helpers.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    "Products": [
        "ProductID",
        "ProductName",
        "Subwarehouse",
    ],
    "Transactions": [
        "TransactionID",
        "Timestamp",
        "TransactionType",
        "ProductID",
        "Quantity",
        "Batch",
        "Subwarehouse",
        "Notes",
    ],
    "Metadata": [
        "Key",
        "Value",
    ],
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values used during setup."""

    data_file: Path
    catalog_file: Optional[Path] = None


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    def _anchor(raw: str) -> Path:
        path = Path(raw)
        return path if path.is_absolute() else (config_path.parent / path).resolve()

    catalog_file = None
    if parser.has_option("Defaults", "CatalogFile"):
        catalog_file = _anchor(parser.get("Defaults", "CatalogFile"))

    return SetupSettings(data_file=_anchor(data_file_raw), catalog_file=catalog_file)


def build_master_workbook(
    *,
    products: Iterable[ProductRow] = (),
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
) -> Workbook:
    """Create an in-memory workbook with every ledger sheet and bold headers.

    ``products`` seed the ``Products`` sheet; the log and metadata start empty.
    """

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    products_sheet = workbook["Products"]
    for product in products:
        products_sheet.append(serialize_product(product))

    return workbook


def create_master_workbook(
    destination: Path,
    *,
    products: Iterable[ProductRow] = (),
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)
    build_master_workbook(products=products).save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named in ``config.ini``, seeded from its catalog file."""

    settings = load_settings(config_path)
    products = read_catalog_csv(settings.catalog_file) if settings.catalog_file else []
    return create_master_workbook(
        settings.data_file,
        products=products,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the warehouse ledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Warehouse Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
