"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from receipt_engine import data_manager, setup_excel
from receipt_engine.constants import SheetName


def test_create_master_workbook_writes_every_sheet(tmp_path):
    """Each managed sheet should exist with a bold header row and no data."""

    path = setup_excel.create_master_workbook(tmp_path / "out" / "receipts.xlsx")

    workbook = openpyxl.load_workbook(path)
    assert set(workbook.sheetnames) == {sheet.value for sheet in SheetName}
    for sheet_name, columns in setup_excel.SHEET_COLUMNS.items():
        sheet = workbook[sheet_name]
        assert [cell.value for cell in sheet[1]] == list(columns)
        assert sheet[1][0].font.bold
        assert sheet.max_row == 1


def test_header_order_matches_serializers():
    """Serialized rows should line up with the header columns."""

    assert len(setup_excel.SHEET_COLUMNS[SheetName.RECEIPTS.value]) == 14
    assert len(setup_excel.SHEET_COLUMNS[SheetName.RECEIPT_ITEMS.value]) == 8
    assert len(setup_excel.SHEET_COLUMNS[SheetName.STOCK_BATCHES.value]) == 10
    assert len(setup_excel.SHEET_COLUMNS[SheetName.STOCK_MOVEMENTS.value]) == 12
    assert len(setup_excel.SHEET_COLUMNS[SheetName.INVENTORY.value]) == 6


def test_create_master_workbook_refuses_overwrite(tmp_path):
    path = setup_excel.create_master_workbook(tmp_path / "receipts.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(path)
    assert setup_excel.create_master_workbook(path, overwrite=True) == path


def test_created_workbook_opens_through_data_layer(tmp_path):
    path = setup_excel.create_master_workbook(tmp_path / "receipts.xlsx")

    workbook = data_manager.open_workbook(path)

    assert data_manager.header_map(workbook, SheetName.INVENTORY.value)["ProductID"] == 2


def test_main_creates_workbook_from_config(tmp_path, capsys):
    config = tmp_path / "config.ini"
    config.write_text("[System]\nDataFile = data/receipts.xlsx\nStoreName = Depot\n")

    assert setup_excel.main(["--config", str(config)]) == 0
    assert (tmp_path / "data" / "receipts.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config), "--force"]) == 0


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "nope.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
