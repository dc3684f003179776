"""Shared pytest fixtures and utilities for the warehouse ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from warehouse_ledger import constants, core_logic, data_manager  # noqa: E402
from warehouse_ledger.constants import TransactionType  # noqa: E402
from warehouse_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "WarehouseName = {warehouse_name}\n"
    "SchemaVersion = {schema_version}\n"
)

SAMPLE_PRODUCTS = (
    data_manager.ProductRow("A", "Anti-A reagent", "Fridge 1"),
    data_manager.ProductRow("B", "Buffer solution", "Shelf 2"),
    data_manager.ProductRow("C", "Control serum", "Fridge 1"),
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    warehouse_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def products() -> tuple[data_manager.ProductRow, ...]:
    return SAMPLE_PRODUCTS


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        products: Sequence[data_manager.ProductRow] = SAMPLE_PRODUCTS,
        filename: str = "warehouse_master.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, products=products, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook seeded with the sample catalog."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        warehouse_name: str = "Test Warehouse",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        extra: str = "",
        create_workbook: bool = True,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        if create_workbook:
            workbook_path = workbook_factory(subdir=bundle_dir.name)
        else:
            workbook_path = bundle_dir / "warehouse_master.xlsx"
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                warehouse_name=warehouse_name,
                schema_version=schema_version,
            )
            + extra,
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            warehouse_name=warehouse_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def make_transaction() -> Callable[..., data_manager.TransactionRow]:
    """Build transaction rows with sensible defaults."""

    counter = {"n": 0}

    def _make(
        product_id: str,
        kind: TransactionType,
        quantity: int,
        *,
        batch: str | None = None,
        subwarehouse: str | None = None,
        timestamp: str = "2025-03-10T09:00:00+00:00",
        transaction_id: str | None = None,
    ) -> data_manager.TransactionRow:
        counter["n"] += 1
        return data_manager.TransactionRow(
            transaction_id=transaction_id or f"t{counter['n']}",
            timestamp_iso=timestamp,
            transaction_type=kind.value,
            product_id=product_id,
            quantity=quantity,
            batch=batch,
            subwarehouse=subwarehouse,
        )

    return _make


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="warehouse-cli", description="Warehouse CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")
