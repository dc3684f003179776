"""Tests for the argparse front-end and its exit codes."""

from __future__ import annotations

import argparse
import csv
from datetime import date
from pathlib import Path

import openpyxl
import pytest

from warehouse_ledger import cli, core_logic, data_manager
from warehouse_ledger.constants import ALL_SUBWAREHOUSES


def _run(config_file: Path, *args: str) -> int:
    return cli.main(["--config", str(config_file), *args])


# ---------------------------------------------------------------------------
# Parser wiring
# ---------------------------------------------------------------------------


def test_configure_subcommands_registers_every_command() -> None:
    parser = cli.build_parser()

    table = cli.configure_subcommands(parser)

    assert set(table) == {
        "add-product",
        "edit-product",
        "delete-product",
        "entry",
        "exit",
        "delete",
        "import",
        "mark",
        "stock",
        "entries",
        "exits",
        "marked",
    }


def test_build_command_table_rejects_duplicates() -> None:
    spec = cli.CommandSpec(name="x", help_text="", register=lambda action: None, execute=lambda ctx, args: 0)

    with pytest.raises(ValueError):
        cli.build_command_table([spec, spec])


def test_register_read_commands_on_custom_parser(cli_parser, subparsers_action) -> None:
    specs = cli.register_read_commands(subparsers_action)

    args = cli_parser.parse_args(["stock", "--level", "5", "--level", "0", "--search", "serum"])

    assert set(specs) == {"stock", "entries", "exits", "marked"}
    assert args.level == [5, 0]
    assert args.search == ["serum"]


def test_level_outside_buckets_is_a_usage_error() -> None:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    with pytest.raises(SystemExit):
        parser.parse_args(["stock", "--level", "9"])


def test_translate_filters_applies_staged_values() -> None:
    args = argparse.Namespace(search=["a", "b"], subwarehouse="Shelf 2", level=[1], since=date(2025, 1, 1), until=None)

    criteria = cli.translate_filters(args)

    assert criteria.search == ["a", "b"]
    assert criteria.subwarehouse == "Shelf 2"
    assert criteria.stock_levels == frozenset({1})
    assert criteria.start == date(2025, 1, 1)


def test_translate_filters_defaults_for_entries_view() -> None:
    criteria = cli.translate_filters(argparse.Namespace(search=[], since=None, until=None))

    assert criteria.subwarehouse == ALL_SUBWAREHOUSES
    assert criteria.stock_levels == frozenset()


def test_dispatch_command_unknown() -> None:
    with pytest.raises(KeyError):
        cli.dispatch_command(None, argparse.Namespace(command="bogus"), {})


# ---------------------------------------------------------------------------
# End-to-end commands
# ---------------------------------------------------------------------------


def test_entry_exit_and_stock_report(config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(config_file, "entry", "--product-id", "A", "--quantity", "10") == 0
    assert _run(config_file, "exit", "--product-id", "A", "--quantity", "3", "--batch", "L1") == 0
    capsys.readouterr()

    assert _run(config_file, "stock", "--search", "anti") == 0

    out = capsys.readouterr().out.strip().splitlines()
    assert out == ["A\tAnti-A reagent\tFridge 1\t7"]


def test_oversell_exits_with_business_rule_code(config_file: Path) -> None:
    _run(config_file, "entry", "--product-id", "B", "--quantity", "2")

    assert _run(config_file, "exit", "--product-id", "B", "--quantity", "3", "--batch", "L") == 2

    context = core_logic.load_runtime_context(config_file)
    assert core_logic.calculate_stock(context)["B"] == 2


def test_exit_without_batch_exits_with_business_rule_code(config_file: Path) -> None:
    _run(config_file, "entry", "--product-id", "B", "--quantity", "2")

    assert _run(config_file, "exit", "--product-id", "B", "--quantity", "1") == 2


def test_missing_config_exit_code(tmp_path: Path) -> None:
    assert _run(tmp_path / "absent.ini", "stock") == 3


def test_degraded_write_exit_code(config_factory) -> None:
    bundle = config_factory(create_workbook=False)

    assert _run(bundle.config_path, "entry", "--product-id", "A", "--quantity", "1") == 4


def test_schema_mismatch_exit_code(config_factory) -> None:
    bundle = config_factory(schema_version="2.0.0")

    assert _run(bundle.config_path, "stock") == 1


def test_import_requires_confirmation(config_file: Path, tmp_path: Path, capsys) -> None:
    path = tmp_path / "batch.csv"
    path.write_text("ID,Cantidad\nA,5\nZ,1\n", encoding="utf-8")

    assert _run(config_file, "import", str(path)) == 0
    out = capsys.readouterr().out
    assert "Row 3: UnknownProduct" in out
    assert "1 valid entry" in out
    assert core_logic.list_transactions(core_logic.load_runtime_context(config_file)) == []

    assert _run(config_file, "import", str(path), "--yes") == 0
    assert "Committed 1 entry." in capsys.readouterr().out
    assert core_logic.calculate_stock(core_logic.load_runtime_context(config_file))["A"] == 5


def test_import_with_no_valid_rows_fails(config_file: Path, tmp_path: Path) -> None:
    path = tmp_path / "batch.csv"
    path.write_text("nombre,precio\nx,1\n", encoding="utf-8")

    assert _run(config_file, "import", str(path), "--yes") == 2


def test_mark_and_marked_report(config_file: Path, capsys) -> None:
    _run(config_file, "entry", "--product-id", "C", "--quantity", "1")
    transaction_id = core_logic.list_transactions(core_logic.load_runtime_context(config_file))[0].transaction_id
    capsys.readouterr()

    assert _run(config_file, "mark", transaction_id) == 0
    assert _run(config_file, "marked") == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines == [f"Transaction {transaction_id} marked", transaction_id]

    _run(config_file, "entries")
    assert capsys.readouterr().out.startswith(f"* {transaction_id}")


def test_product_commands(config_file: Path) -> None:
    assert _run(config_file, "add-product", "--product-id", "D", "--product-name", "Diluent", "--subwarehouse", "Bench") == 0
    assert _run(config_file, "add-product", "--product-id", "D", "--product-name", "Again", "--subwarehouse", "Bench") == 2
    assert _run(config_file, "edit-product", "--product-id", "D", "--product-name", "Diluent 2") == 0

    workbook = data_manager.open_workbook(core_logic.load_runtime_context(config_file).settings.data_file)
    names = {p.product_id: p.product_name for p in data_manager.iter_products(workbook)}
    assert names["D"] == "Diluent 2"

    assert _run(config_file, "delete-product", "--product-id", "D") == 0
    assert _run(config_file, "delete-product", "--product-id", "D") == 2


def test_handle_cli_error_codes() -> None:
    assert cli.handle_cli_error(core_logic.BusinessRuleViolation("x")) == 2
    assert cli.handle_cli_error(FileNotFoundError("x")) == 3
    assert cli.handle_cli_error(data_manager.PersistenceError("x")) == 4
    assert cli.handle_cli_error(ValueError("x")) == 1


# ---------------------------------------------------------------------------
# Report export
# ---------------------------------------------------------------------------


def test_stock_export_writes_filtered_rows(config_file: Path, tmp_path: Path, capsys) -> None:
    _run(config_file, "entry", "--product-id", "A", "--quantity", "4")
    capsys.readouterr()
    target = tmp_path / "Reporte_Stock.xlsx"

    assert _run(config_file, "stock", "--subwarehouse", "Fridge 1", "--export", str(target)) == 0

    assert capsys.readouterr().out.strip() == f"Exported 2 row(s) to {target}"
    rows = list(openpyxl.load_workbook(target)["Reporte_Stock"].iter_rows(min_row=2, values_only=True))
    assert rows == [("A", "Anti-A reagent", "Fridge 1", 4), ("C", "Control serum", "Fridge 1", 0)]


def test_entries_export_writes_xlsx(config_file: Path, tmp_path: Path) -> None:
    _run(config_file, "entry", "--product-id", "B", "--quantity", "6")
    target = tmp_path / "Reporte_Entradas.xlsx"

    assert _run(config_file, "entries", "--export", str(target)) == 0

    rows = list(openpyxl.load_workbook(target)["Reporte_Entradas"].iter_rows(min_row=2, values_only=True))
    assert [row[1:] for row in rows] == [("B", "Buffer solution", 6)]


def test_exits_export_writes_csv(config_file: Path, tmp_path: Path) -> None:
    _run(config_file, "entry", "--product-id", "A", "--quantity", "5")
    _run(config_file, "exit", "--product-id", "A", "--quantity", "2", "--batch", "L7")
    target = tmp_path / "Reporte_Salidas.csv"

    assert _run(config_file, "exits", "--export", str(target)) == 0

    with target.open(newline="", encoding="utf-8-sig") as handle:
        assert list(csv.reader(handle)) == [["ITEM", "LOTE", "CANTIDAD"], ['="A"', "L7", "2"]]


def test_unreadable_quantity_cell_exits_with_storage_code(config_file: Path) -> None:
    data_file = core_logic.load_runtime_context(config_file).settings.data_file
    workbook = data_manager.open_workbook(data_file)
    workbook[data_manager.TRANSACTIONS_SHEET].append(["t1", "2025-01-01T00:00:00", "Entrada", "A", "many", None, None, None])
    data_manager.save_workbook(workbook, data_file)

    assert _run(config_file, "stock") == 4
