"""Header-keyword column resolution.

Sheets are edited by hand, so headers get renamed, reordered, suffixed with
notes or typed in full-width characters. Instead of fixed positions the
ledger locates each logical field by scanning the header row for any of the
field's candidate substrings.

Resolution is a pure function of the header row and the keyword table. Call
it once per sheet read and reuse the map for every row of that read.
"""

from __future__ import annotations

import unicodedata
from typing import Any, Dict, Mapping, Optional, Sequence

# Marker for a field with no matching header cell.
NOT_FOUND = None

ColumnMap = Dict[str, Optional[int]]


def normalize_header(value: Any) -> str:
    """Fold a header cell for matching: NFKC, casefold, trimmed.

    NFKC maps full-width letters and brackets onto their ASCII forms so
    ``"ＱＲ決済"`` and ``"QR決済"`` compare equal.
    """

    if value is None:
        return ""
    return unicodedata.normalize("NFKC", str(value)).casefold().strip()


def resolve_columns(
    header_row: Sequence[Any],
    keyword_groups: Mapping[str, Sequence[str]],
    *,
    exclusive: bool = True,
) -> ColumnMap:
    """Map each field in ``keyword_groups`` to a column index of ``header_row``.

    For every field, header cells are scanned left to right and the first
    cell containing any of the field's candidates (case-insensitive substring)
    wins. Fields are processed in declaration order.

    Args:
        header_row: Raw header cell values.
        keyword_groups: Field name to ordered candidate substrings.
        exclusive: When ``True`` a cell claimed by an earlier field is skipped
            by later fields, so the first declared field wins an ambiguous
            header. When ``False`` every field is resolved independently and
            one cell may serve several fields.

    Returns:
        dict[str, int | None]: 0-based column index per field, or
            :data:`NOT_FOUND` when no header matches.
    """

    headers = [normalize_header(cell) for cell in header_row]
    claimed: set[int] = set()
    column_map: ColumnMap = {}

    for field_name, candidates in keyword_groups.items():
        needles = [normalize_header(candidate) for candidate in candidates]
        needles = [needle for needle in needles if needle]
        column_map[field_name] = NOT_FOUND
        for index, header in enumerate(headers):
            if not header or (exclusive and index in claimed):
                continue
            if any(needle in header for needle in needles):
                column_map[field_name] = index
                claimed.add(index)
                break

    return column_map


def missing_fields(column_map: Mapping[str, Optional[int]]) -> list[str]:
    """List the fields that resolved to :data:`NOT_FOUND`."""

    return [name for name, index in column_map.items() if index is NOT_FOUND]


def cell_value(row: Sequence[Any], index: Optional[int]) -> Any:
    """Return ``row[index]``, or ``""`` when unresolved, out of range or empty."""

    if index is NOT_FOUND or index < 0 or index >= len(row):
        return ""
    value = row[index]
    return "" if value is None else value
