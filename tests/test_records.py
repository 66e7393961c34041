"""Unit tests for cell coercion and row mapping."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from salon_ledger import records
from salon_ledger.columns import resolve_columns
from salon_ledger.schema import INTAKE_HEADER, SALES_HEADER, default_schema

from conftest import intake_row, sales_row


@pytest.fixture
def sales_map():
    schema = default_schema()
    return resolve_columns(schema.sales_header, schema.sales_keywords)


@pytest.fixture
def intake_map():
    schema = default_schema()
    return resolve_columns(schema.intake_header, schema.intake_keywords)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1000", 1000),
        (1500, 1500),
        (2500.9, 2500),
        ("1,200円", 1200),
        ("¥3,000", 3000),
        ("１２００", 1200),
        ("12abc", 12),
        ("", 0),
        (None, 0),
        ("abc", 0),
        ("-500", 0),
        (-3, 0),
        (True, 0),
        (float("nan"), 0),
    ],
)
def test_to_int(value, expected):
    assert records.to_int(value) == expected


def test_format_date_renders_native_values_without_padding():
    assert records.format_date(datetime(2026, 3, 5, 14, 0), "Asia/Tokyo") == "2026/3/5"
    assert records.format_date(date(2026, 12, 1), "Asia/Tokyo") == "2026/12/1"


def test_format_date_converts_aware_values_to_the_reference_zone():
    # 20:00 UTC on the 4th is already the 5th in Tokyo.
    assert records.format_date(datetime(2026, 3, 4, 20, 0, tzinfo=UTC), "Asia/Tokyo") == "2026/3/5"


def test_format_date_passes_text_through():
    assert records.format_date(" 2026-03-05 ", "Asia/Tokyo") == "2026-03-05"
    assert records.format_date(None, "Asia/Tokyo") == ""


@pytest.mark.parametrize(
    "value",
    ["2026/3/5", "2026-03-05", "2026.3.5", "2026年3月5日", "2026/03/05 10:15:00", datetime(2026, 3, 5, 9)],
)
def test_parse_day_accepts_common_forms(value):
    assert records.parse_day(value, "Asia/Tokyo") == date(2026, 3, 5)


def test_parse_day_rejects_unknown_text():
    assert records.parse_day("昨日", "Asia/Tokyo") is None
    assert records.parse_day("2026/13/40", "Asia/Tokyo") is None


def test_normalize_store_matches_aliases():
    aliases = default_schema().store_aliases

    assert records.normalize_store("千葉店", aliases) == "chiba"
    assert records.normalize_store("FUNABASHI", aliases) == "funabashi"
    assert records.normalize_store("つだぬま", aliases) == "tsudanuma"
    assert records.normalize_store(" Ginza ", aliases) == "ginza"


def test_sales_row_maps_store_and_cash(sales_map):
    row = sales_row("2026/10/18", "千葉店", "Yui", cash="1000")

    entries = records.map_sales_rows([row], sales_map, default_schema())

    assert len(entries) == 1
    entry = entries[0]
    assert entry.store == "chiba"
    assert entry.staff == "yui"
    assert entry.sales.cash == 1000
    assert entry.sales.credit == 0
    assert entry.discounts.refund == 0


def test_rows_missing_required_fields_are_dropped(sales_map):
    rows = [
        sales_row(date=""),
        sales_row(store=None),
        sales_row(staff="  "),
        sales_row(cash="500"),
    ]

    entries = records.map_sales_rows(rows, sales_map, default_schema())

    assert [entry.sales.cash for entry in entries] == [500]


def test_positional_ids_follow_data_row_offsets(sales_map):
    rows = [sales_row(cash="1"), sales_row(date=None), sales_row(cash="3")]

    entries = records.map_sales_rows(rows, sales_map, default_schema())

    assert [(entry.id, entry.row) for entry in entries] == [("1", 2), ("3", 4)]


def test_record_id_column_is_used_when_filled(sales_map):
    entries = records.map_sales_rows([sales_row(record_id="abc123")], sales_map, default_schema())

    assert entries[0].id == "abc123"


def test_sales_entry_wire_shape(sales_map):
    row = sales_row(cash="1000", new_primary="2", review="1")

    payload = records.map_sales_rows([row], sales_map, default_schema())[0].to_dict()

    assert set(payload) == {
        "id",
        "date",
        "store",
        "staff",
        "sales",
        "discounts",
        "customerCounts",
        "nextBookings",
        "reviewCount",
        "blogUpdateCount",
        "snsUpdateCount",
    }
    assert payload["customerCounts"]["newPrimaryChannel"] == 2
    assert payload["nextBookings"] == {"newPrimaryChannel": 0, "newSecondaryChannel": 0, "existing": 0, "acquaintance": 0}
    assert payload["reviewCount"] == 1


def test_unresolved_numeric_columns_read_as_zero():
    schema = default_schema()
    column_map = resolve_columns(["日付", "店舗", "担当者"], schema.sales_keywords)

    entry = records.map_sales_rows([["2026/1/2", "船橋", "Aki"]], column_map, schema)[0]

    assert entry.sales.to_dict() == {"cash": 0, "credit": 0, "qr": 0, "product": 0}
    assert entry.id == "1"


def test_intake_rows_map_fields_and_ids(intake_map):
    rows = [
        intake_row(name="山田 花子", phone=9012345678.0, email="hanako@example.com"),
        intake_row(date="", name=""),
        intake_row(date="", name="佐藤 一郎"),
    ]

    entries = records.map_intake_rows(rows, intake_map, "chiba", default_schema())

    assert [entry.id for entry in entries] == ["chiba-1", "chiba-3"]
    first = entries[0].to_dict()
    assert first["name"] == "山田 花子"
    assert first["phone"] == "9012345678"
    assert first["email"] == "hanako@example.com"
    assert first["hairConcern"] == ""
    assert first["store"] == "chiba"


def test_intake_row_needs_only_a_date_or_a_name(intake_map):
    rows = [
        intake_row(name=""),
        intake_row(date="", name="佐藤 一郎"),
        intake_row(date=None, name=None, phone="090"),
    ]

    entries = records.map_intake_rows(rows, intake_map, "funabashi", default_schema())

    assert [entry.id for entry in entries] == ["funabashi-1", "funabashi-2"]


def test_intake_unresolved_fields_are_empty_strings():
    schema = default_schema()
    column_map = resolve_columns(["タイムスタンプ", "氏名", "電話番号"], schema.intake_keywords)

    payload = records.map_intake_rows([["2026/1/2", "花子", "090"]], column_map, "chiba", schema)[0].to_dict()

    assert payload["name"] == "花子"
    assert payload["phone"] == "090"
    assert payload["allergy"] == ""
    assert payload["visitHistory"] == ""
    assert None not in payload.values()


def test_sales_changes_cover_only_present_fields(sales_map):
    patch = {"id": "1", "sales": {"cash": "2,000"}, "staff": "Mio"}

    changes = records.sales_changes(patch, sales_map, "Asia/Tokyo")

    assert changes == {
        SALES_HEADER.index("レコードID"): "1",
        SALES_HEADER.index("担当者"): "Mio",
        SALES_HEADER.index("現金"): 2000,
    }


def test_build_sales_row_writes_native_dates(sales_map):
    record = {"date": "2026-10-18", "store": "chiba", "staff": "yui", "sales": {"qr": 800}}

    row = records.build_sales_row(record, sales_map, len(SALES_HEADER), "Asia/Tokyo")

    assert row[SALES_HEADER.index("日付")] == datetime(2026, 10, 18)
    assert row[SALES_HEADER.index("QR決済")] == 800
    assert row[SALES_HEADER.index("現金")] is None
    assert len(row) == len(SALES_HEADER)


def test_intake_header_default_has_expected_width():
    assert len(INTAKE_HEADER) == 16
