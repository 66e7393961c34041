"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import patch

import openpyxl
import pytest

from salon_ledger import constants, data_manager


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=ledger.xlsx\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_read_config_keeps_option_case(config_file: Path):
    parser = data_manager.read_config(config_file)

    assert "SchemaVersion" in parser["System"]


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == bundle.workbook_path
    assert settings.schema_version == constants.EXPECTED_SCHEMA_VERSION


def test_parse_settings_applies_defaults_and_overrides(tmp_path):
    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read_string(
        "[System]\nDataFile = ledger.xlsx\nSchemaVersion = 1.0.0\n"
        "[Cache]\nSalesTTL = 42\nMaxPayloadChars = 500\n"
        "[Server]\nPort = 9001\n"
    )

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.cache.sales_ttl == 42
    assert settings.cache.max_payload_chars == 500
    assert settings.cache.customers_ttl == 300
    assert settings.cache.store_view_ttl == 30
    assert settings.cache.goals_ttl == 3600
    assert settings.cache.aggregate_ttl == 120
    assert settings.session_hours == 24
    assert settings.time_zone == "Asia/Tokyo"
    assert settings.host == "127.0.0.1"
    assert settings.port == 9001


def test_parse_settings_requires_expected_sections(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")

    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_non_numeric_ttl(tmp_path):
    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read_string("[System]\nDataFile = x.xlsx\nSchemaVersion = 1.0.0\n[Cache]\nSalesTTL = soon\n")

    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_workbook_source_reads_header_and_trims_trailing_blank_rows(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)
    source.write_range("SalesLog", 2, 1, [["id-1", "2026/1/1", "千葉", "yui"], [None, None, None, None]])

    rows = source.read_rows("SalesLog")

    assert len(rows) == 2
    assert rows[1][:4] == ["id-1", "2026/1/1", "千葉", "yui"]


def test_workbook_source_writes_are_saved_immediately(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)

    source.write_cell("SalesLog", 2, 2, "2026/2/2")

    reloaded = openpyxl.load_workbook(master_workbook_path)
    assert reloaded["SalesLog"].cell(row=2, column=2).value == "2026/2/2"


def test_append_row_returns_row_number(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)

    first = source.append_row("Sessions", ["a", "admin"])
    second = source.append_row("Sessions", ["b", "admin"])

    assert (first, second) == (2, 3)


def test_delete_row_shifts_later_rows_up(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)
    source.append_row("Sessions", ["a"])
    source.append_row("Sessions", ["b"])

    source.delete_row("Sessions", 2)

    assert [row[0] for row in source.read_rows("Sessions")[1:]] == ["b"]


def test_create_sheet_is_idempotent(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)

    source.create_sheet("Extra", ["Key", "Value"])
    source.create_sheet("Extra", ["Other"])

    assert source.read_rows("Extra") == [["Key", "Value"]]
    assert source.workbook["Extra"].cell(row=1, column=1).font.bold


def test_missing_sheet_raises_key_error(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)

    assert source.has_sheet("Nope") is False
    with pytest.raises(KeyError):
        source.read_rows("Nope")


def test_workbook_source_reloads_after_external_save(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)
    assert source.read_rows("SalesLog")[1:] == []

    other = openpyxl.load_workbook(master_workbook_path)
    other["SalesLog"].cell(row=2, column=1, value="external")
    other.save(master_workbook_path)
    stat = master_workbook_path.stat()
    os.utime(master_workbook_path, (stat.st_atime, stat.st_mtime + 5))

    assert source.read_rows("SalesLog")[1][0] == "external"


def test_save_workbook_replaces_file_atomically(master_workbook_path):
    workbook = openpyxl.load_workbook(master_workbook_path)
    workbook["SalesLog"].cell(row=2, column=1, value="half-written")

    with patch.object(workbook, "save", side_effect=OSError("disk full")):
        with pytest.raises(OSError):
            data_manager.save_workbook(workbook, master_workbook_path)

    assert openpyxl.load_workbook(master_workbook_path)["SalesLog"].max_row == 1
    assert list(master_workbook_path.parent.glob(f".{master_workbook_path.stem}-*")) == []


def test_concurrent_reads_and_writes_share_one_source(master_workbook_path):
    source = data_manager.WorkbookSource(master_workbook_path)

    def work(index: int) -> int:
        if index % 2:
            source.append_row("Sessions", [f"token-{index}", "staff"])
        return len(source.read_rows("SalesLog"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(work, range(40)))

    assert results == [1] * 40
    assert len(source.read_rows("Sessions")) == 21
    assert openpyxl.load_workbook(master_workbook_path)["Sessions"].max_row == 21


def test_reader_in_second_source_never_sees_partial_file(master_workbook_path):
    writer = data_manager.WorkbookSource(master_workbook_path)
    reader = data_manager.WorkbookSource(master_workbook_path)

    def write(index: int) -> None:
        writer.write_cell("Settings", 2, 1, f"value-{index}")

    def read(_index: int) -> str:
        reader.refresh()
        return reader.read_rows("SalesLog")[0][0]

    with ThreadPoolExecutor(max_workers=4) as pool:
        writes = [pool.submit(write, index) for index in range(15)]
        reads = [pool.submit(read, index) for index in range(15)]

    assert all(future.exception() is None for future in writes)
    assert {future.result() for future in reads} == {"レコードID"}
