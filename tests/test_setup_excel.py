"""Tests for the workbook bootstrap helper."""

from __future__ import annotations

from pathlib import Path

import openpyxl
import pytest

from lounge_settlement import data_manager, setup_excel


def test_create_master_workbook_writes_every_sheet(tmp_path: Path):
    """Each configured sheet should exist with a bold header row."""

    target = setup_excel.create_master_workbook(tmp_path / "book.xlsx")
    workbook = openpyxl.load_workbook(target)

    assert workbook.sheetnames == list(data_manager.SHEET_COLUMNS)
    for name, columns in data_manager.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[name][1]]
        assert header == list(columns)
        assert workbook[name]["A1"].font.bold is True


def test_create_master_workbook_refuses_overwrite(tmp_path: Path):
    """An existing file is kept unless overwrite is requested."""

    target = tmp_path / "book.xlsx"
    setup_excel.create_master_workbook(target)
    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(target)
    setup_excel.create_master_workbook(target, overwrite=True)


def test_main_uses_config(tmp_path: Path, capsys):
    """main should resolve DataFile relative to the config file."""

    config = tmp_path / "config.ini"
    config.write_text(
        "[System]\nDataFile = data/lounge.xlsx\nLoungeName = Lounge\nSchemaVersion = 2.1.0\n"
    )

    assert setup_excel.main(["--config", str(config)]) == 0
    assert (tmp_path / "data" / "lounge.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config)]) == 1


def test_main_output_overrides_config(tmp_path: Path):
    """--output writes the workbook without reading any config."""

    target = tmp_path / "direct.xlsx"
    assert setup_excel.main(["--config", str(tmp_path / "absent.ini"), "--output", str(target)]) == 0
    assert openpyxl.load_workbook(target)["Products"]["A1"].value == "ProductID"
