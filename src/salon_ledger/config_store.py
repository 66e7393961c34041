"""JSON settings blobs stored in auxiliary sheets.

Goals, salaries, credentials, settings and the staff roster are each one
JSON document kept in a ``Key | Value | UpdatedAt`` row. The sheet is created
on first write. Reads are forgiving: a missing sheet, a missing key or a
value that is not valid JSON all yield the caller's default, so a hand-edited
cell cannot take a page down.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Callable, List, Optional

from . import log
from .constants import ConfigKey
from .data_manager import TabularSource
from .schema import CONFIG_HEADER, SheetSchema


class ConfigStore:
    """Read and write JSON blobs by :class:`ConfigKey`."""

    def __init__(
        self,
        source: TabularSource,
        schema: SheetSchema,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.source = source
        self.schema = schema
        self.clock = clock

    @staticmethod
    def _find_row(rows: List[List[Any]], key: str) -> Optional[int]:
        """Return the 1-based sheet row holding ``key``, if any."""

        for row_number, row in enumerate(rows, start=1):
            if row_number == 1:
                continue
            if row and str(row[0] or "").strip() == key:
                return row_number
        return None

    def load_json(self, key: ConfigKey, default: Any = None) -> Any:
        """Return the parsed blob for ``key``, or ``default`` if unusable."""

        fallback = {} if default is None else default
        sheet = self.schema.config_sheet_for(key)
        if not self.source.has_sheet(sheet):
            return fallback

        rows = self.source.read_rows(sheet)
        row_number = self._find_row(rows, key.value)
        if row_number is None:
            return fallback
        row = rows[row_number - 1]
        raw = row[1] if len(row) > 1 else None
        if raw is None or str(raw).strip() == "":
            return fallback
        try:
            return json.loads(str(raw))
        except ValueError:
            log.warning("Stored JSON for '%s' in sheet '%s' is malformed; using default", key.value, sheet)
            return fallback

    def save_json(self, key: ConfigKey, value: Any) -> None:
        """Serialize ``value`` under ``key``, creating the sheet or row as needed."""

        sheet = self.schema.config_sheet_for(key)
        if not self.source.has_sheet(sheet):
            self.source.create_sheet(sheet, CONFIG_HEADER)

        payload = json.dumps(value, ensure_ascii=False)
        stamp = self.clock().isoformat()
        row_number = self._find_row(self.source.read_rows(sheet), key.value)
        if row_number is None:
            self.source.append_row(sheet, [key.value, payload, stamp])
        else:
            self.source.write_range(sheet, row_number, 1, [[key.value, payload, stamp]])
        log.info("Saved '%s' to sheet '%s'", key.value, sheet)
