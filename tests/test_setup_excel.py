"""Tests for the workbook bootstrap script."""

from __future__ import annotations

from pathlib import Path

import openpyxl
import pytest

from warehouse_ledger import data_manager, setup_excel


def _write_config(directory: Path, extra: str = "") -> Path:
    config_path = directory / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = data/warehouse_master.xlsx\nWarehouseName = W\nSchemaVersion = 1.0.0\n" + extra,
        encoding="utf-8",
    )
    return config_path


def test_create_master_workbook_writes_headers(tmp_path: Path, products) -> None:
    destination = setup_excel.create_master_workbook(tmp_path / "book.xlsx", products=products)

    workbook = openpyxl.load_workbook(destination)

    assert workbook.sheetnames == list(setup_excel.SHEET_COLUMNS)
    for sheet_name, columns in setup_excel.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)
        assert workbook[sheet_name]["A1"].font.bold
    assert tuple(data_manager.iter_products(workbook)) == products


def test_create_master_workbook_refuses_overwrite(tmp_path: Path) -> None:
    destination = setup_excel.create_master_workbook(tmp_path / "book.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(destination)

    setup_excel.create_master_workbook(destination, overwrite=True)


def test_run_from_config_seeds_catalog(tmp_path: Path) -> None:
    (tmp_path / "catalog.csv").write_text("ProductID,ProductName,Subwarehouse\nX1,Xylene,Cabinet\n", encoding="utf-8")
    config_path = _write_config(tmp_path, "[Defaults]\nCatalogFile = catalog.csv\n")

    output = setup_excel.run_from_config(config_path)

    assert output == (tmp_path / "data" / "warehouse_master.xlsx").resolve()
    workbook = data_manager.open_workbook(output)
    assert [p.product_id for p in data_manager.iter_products(workbook)] == ["X1"]


def test_main_reports_existing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = _write_config(tmp_path)

    assert setup_excel.main(["--config", str(config_path)]) == 0
    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_main_missing_config(tmp_path: Path) -> None:
    assert setup_excel.main(["--config", str(tmp_path / "nope.ini")]) == 1
