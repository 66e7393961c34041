"""Row-to-record mapping for sales logs and customer intake sheets.

Rows arrive exactly as the workbook holds them: numbers typed as text, blank
cells, native dates next to hand-typed ones, store names in several scripts.
The mappers here coerce each cell on its own and drop rows that fail the
validity gate without reporting them.

Known inconsistency: native date cells are rendered as ``YYYY/M/D`` in the
schema's time zone while text date cells pass through unchanged, so a sheet
mixing both yields mixed formats. :func:`parse_day` is the way to compare
such values.
"""

from __future__ import annotations

import math
import numbers
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .columns import ColumnMap, cell_value, normalize_header
from .schema import SheetSchema


_LEADING_INT = re.compile(r"^[+-]?\d+")
_TEXT_DAY = re.compile(r"^\s*(\d{4})\s*[/\-.年]\s*(\d{1,2})\s*[/\-.月]\s*(\d{1,2})")
_NUMBER_NOISE = str.maketrans("", "", ",¥円 ")


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------

def to_int(value: Any) -> int:
    """Parse a cell as a non-negative integer, defaulting to 0.

    Text is read like a hand-typed amount: thousands separators, ``¥`` and
    ``円`` are ignored and the leading integer is taken (``"1,200円"`` is
    1200, ``"12abc"`` is 12). Blank, non-numeric and negative values are 0.
    """

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, numbers.Real):
        as_float = float(value)
        if not math.isfinite(as_float):
            return 0
        number = int(as_float)
    else:
        text = unicodedata.normalize("NFKC", str(value)).strip().translate(_NUMBER_NOISE)
        match = _LEADING_INT.match(text)
        if match is None:
            return 0
        number = int(match.group())
    return number if number > 0 else 0


def _localize(moment: datetime, time_zone: str) -> datetime:
    # Naive values come from the sheet and are already store-local.
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(time_zone))


def format_date(value: Any, time_zone: str) -> str:
    """Render a date cell as ``YYYY/M/D``; text cells pass through stripped."""

    if value is None:
        return ""
    if isinstance(value, datetime):
        local = _localize(value, time_zone)
        return f"{local.year}/{local.month}/{local.day}"
    if isinstance(value, date):
        return f"{value.year}/{value.month}/{value.day}"
    return str(value).strip()


def parse_day(value: Any, time_zone: str) -> Optional[date]:
    """Return the calendar day of a native or text date cell, if recognizable.

    Text is accepted as ``YYYY/M/D``, ``YYYY-MM-DD``, ``YYYY.M.D`` or
    ``YYYY年M月D日``, optionally followed by a time.
    """

    if isinstance(value, datetime):
        return _localize(value, time_zone).date()
    if isinstance(value, date):
        return value
    if value is None:
        return None
    match = _TEXT_DAY.match(unicodedata.normalize("NFKC", str(value)))
    if match is None:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def to_text(value: Any, time_zone: str) -> str:
    """Render any cell as trimmed text; dates use :func:`format_date`."""

    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return format_date(value, time_zone)
    if isinstance(value, float) and value.is_integer():
        # Phone numbers typed into numeric cells.
        return str(int(value))
    return str(value).strip()


def normalize_store(value: Any, aliases: Mapping[str, Sequence[str]]) -> str:
    """Map a store cell onto a canonical store id by alias substring.

    Unmatched names come back lowercased and otherwise untouched.
    """

    text = normalize_header(value)
    if not text:
        return ""
    for store, names in aliases.items():
        if any(normalize_header(name) and normalize_header(name) in text for name in names):
            return store
    return text


def normalize_staff(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SalesBreakdown:
    cash: int = 0
    credit: int = 0
    qr: int = 0
    product: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"cash": self.cash, "credit": self.credit, "qr": self.qr, "product": self.product}


@dataclass(frozen=True)
class Discounts:
    hpb_points: int = 0
    hpb_gift: int = 0
    other: int = 0
    refund: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "hpbPoints": self.hpb_points,
            "hpbGift": self.hpb_gift,
            "other": self.other,
            "refund": self.refund,
        }


@dataclass(frozen=True)
class CustomerCounts:
    """Head counts by acquisition channel; also used for next bookings."""

    new_primary_channel: int = 0
    new_secondary_channel: int = 0
    existing: int = 0
    acquaintance: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "newPrimaryChannel": self.new_primary_channel,
            "newSecondaryChannel": self.new_secondary_channel,
            "existing": self.existing,
            "acquaintance": self.acquaintance,
        }


@dataclass(frozen=True)
class SalesEntry:
    """One valid row of the sales log.

    ``id`` is the record-id cell when the sheet carries one, otherwise the
    1-based offset into the data rows, which shifts if rows are inserted or
    deleted above it. ``row`` is the sheet row number used for write-back.
    """

    id: str
    row: int
    date: str
    store: str
    staff: str
    sales: SalesBreakdown = SalesBreakdown()
    discounts: Discounts = Discounts()
    customer_counts: CustomerCounts = CustomerCounts()
    next_bookings: CustomerCounts = CustomerCounts()
    review_count: int = 0
    blog_update_count: int = 0
    sns_update_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "store": self.store,
            "staff": self.staff,
            "sales": self.sales.to_dict(),
            "discounts": self.discounts.to_dict(),
            "customerCounts": self.customer_counts.to_dict(),
            "nextBookings": self.next_bookings.to_dict(),
            "reviewCount": self.review_count,
            "blogUpdateCount": self.blog_update_count,
            "snsUpdateCount": self.sns_update_count,
        }


@dataclass(frozen=True)
class CustomerIntakeEntry:
    """One valid intake survey response; unresolved fields are ``""``."""

    id: str
    store: str
    date: str
    fields: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "store": self.store, "date": self.date}
        payload.update(self.fields)
        return payload


# Sales field name -> location in the wire record.
SALES_FIELD_PATHS: Mapping[str, Tuple[str, ...]] = {
    "id": ("id",),
    "date": ("date",),
    "store": ("store",),
    "staff": ("staff",),
    "cash": ("sales", "cash"),
    "credit": ("sales", "credit"),
    "qr": ("sales", "qr"),
    "product": ("sales", "product"),
    "hpb_points": ("discounts", "hpbPoints"),
    "hpb_gift": ("discounts", "hpbGift"),
    "other_discount": ("discounts", "other"),
    "refund": ("discounts", "refund"),
    "new_primary": ("customerCounts", "newPrimaryChannel"),
    "new_secondary": ("customerCounts", "newSecondaryChannel"),
    "existing": ("customerCounts", "existing"),
    "acquaintance": ("customerCounts", "acquaintance"),
    "next_new_primary": ("nextBookings", "newPrimaryChannel"),
    "next_new_secondary": ("nextBookings", "newSecondaryChannel"),
    "next_existing": ("nextBookings", "existing"),
    "next_acquaintance": ("nextBookings", "acquaintance"),
    "review_count": ("reviewCount",),
    "blog_update_count": ("blogUpdateCount",),
    "sns_update_count": ("snsUpdateCount",),
}

SALES_TEXT_FIELDS = frozenset({"id", "date", "store", "staff"})


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def _counts(row: Sequence[Any], column_map: ColumnMap, prefix: str = "") -> CustomerCounts:
    return CustomerCounts(
        new_primary_channel=to_int(cell_value(row, column_map.get(f"{prefix}new_primary"))),
        new_secondary_channel=to_int(cell_value(row, column_map.get(f"{prefix}new_secondary"))),
        existing=to_int(cell_value(row, column_map.get(f"{prefix}existing"))),
        acquaintance=to_int(cell_value(row, column_map.get(f"{prefix}acquaintance"))),
    )


def map_sales_row(
    row: Sequence[Any],
    column_map: ColumnMap,
    schema: SheetSchema,
    *,
    offset: int,
    first_row: int = 2,
) -> Optional[SalesEntry]:
    """Map one data row; ``None`` when date, store or staff is blank."""

    def number(name: str) -> int:
        return to_int(cell_value(row, column_map.get(name)))

    entry_date = format_date(cell_value(row, column_map.get("date")), schema.time_zone)
    store = normalize_store(cell_value(row, column_map.get("store")), schema.store_aliases)
    staff = normalize_staff(cell_value(row, column_map.get("staff")))
    if not (entry_date and store and staff):
        return None

    record_id = to_text(cell_value(row, column_map.get("id")), schema.time_zone) or str(offset)
    return SalesEntry(
        id=record_id,
        row=first_row + offset - 1,
        date=entry_date,
        store=store,
        staff=staff,
        sales=SalesBreakdown(
            cash=number("cash"),
            credit=number("credit"),
            qr=number("qr"),
            product=number("product"),
        ),
        discounts=Discounts(
            hpb_points=number("hpb_points"),
            hpb_gift=number("hpb_gift"),
            other=number("other_discount"),
            refund=number("refund"),
        ),
        customer_counts=_counts(row, column_map),
        next_bookings=_counts(row, column_map, prefix="next_"),
        review_count=number("review_count"),
        blog_update_count=number("blog_update_count"),
        sns_update_count=number("sns_update_count"),
    )


def map_sales_rows(
    rows: Sequence[Sequence[Any]],
    column_map: ColumnMap,
    schema: SheetSchema,
    *,
    first_row: int = 2,
) -> List[SalesEntry]:
    """Map the data rows of a sales sheet (header excluded) to entries.

    Args:
        rows: Data rows in sheet order.
        column_map: Result of resolving the sheet header once.
        schema: Supplies store aliases and the time zone.
        first_row: Sheet row number of ``rows[0]``.
    """

    entries: List[SalesEntry] = []
    for offset, row in enumerate(rows, start=1):
        entry = map_sales_row(row, column_map, schema, offset=offset, first_row=first_row)
        if entry is not None:
            entries.append(entry)
    return entries


def map_intake_rows(
    rows: Sequence[Sequence[Any]],
    column_map: ColumnMap,
    store: str,
    schema: SheetSchema,
) -> List[CustomerIntakeEntry]:
    """Map the data rows of one store's intake sheet (header excluded).

    Rows with neither a date nor a name are dropped.
    """

    entries: List[CustomerIntakeEntry] = []
    text_fields = [name for name in column_map if name != "date"]
    for offset, row in enumerate(rows, start=1):
        entry_date = format_date(cell_value(row, column_map.get("date")), schema.time_zone)
        fields = {
            camel_case(name): to_text(cell_value(row, column_map.get(name)), schema.time_zone)
            for name in text_fields
        }
        if not entry_date and not fields.get("name"):
            continue
        entries.append(
            CustomerIntakeEntry(
                id=f"{store}-{offset}",
                store=store,
                date=entry_date,
                fields=fields,
            )
        )
    return entries


# ---------------------------------------------------------------------------
# Write-back
# ---------------------------------------------------------------------------

_MISSING = object()


def _lookup(record: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    current: Any = record
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


def sales_cell(field_name: str, value: Any, time_zone: str) -> Any:
    """Convert a wire value into the cell value written for ``field_name``."""

    if field_name == "date":
        day = parse_day(value, time_zone)
        return datetime(day.year, day.month, day.day) if day is not None else to_text(value, time_zone)
    if field_name in SALES_TEXT_FIELDS:
        return to_text(value, time_zone)
    return to_int(value)


def sales_changes(record: Mapping[str, Any], column_map: ColumnMap, time_zone: str) -> Dict[int, Any]:
    """Return ``{column index: cell value}`` for the fields present in ``record``.

    Fields absent from the record, or without a resolved column, are left out.
    """

    changes: Dict[int, Any] = {}
    for field_name, path in SALES_FIELD_PATHS.items():
        index = column_map.get(field_name)
        if index is None:
            continue
        value = _lookup(record, path)
        if value is _MISSING:
            continue
        changes[index] = sales_cell(field_name, value, time_zone)
    return changes


def build_sales_row(record: Mapping[str, Any], column_map: ColumnMap, width: int, time_zone: str) -> List[Any]:
    """Lay ``record`` out as a full sheet row of ``width`` cells."""

    row: List[Any] = [None] * width
    for index, value in sales_changes(record, column_map, time_zone).items():
        if index < width:
            row[index] = value
    return row
