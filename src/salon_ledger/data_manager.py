"""Data access layer for Salon Ledger.

This module provides the low-level helpers that read from and write to the
ledger workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations through :class:`WorkbookSource`, the concrete
   :class:`TabularSource` the rest of the package talks to: bulk reads, range
   and cell writes, appends and row deletion.
"""


from __future__ import annotations

import configparser
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_MAX_PAYLOAD_CHARS,
    DEFAULT_SESSION_HOURS,
    DEFAULT_TIME_ZONE,
)


CONFIG_FILE_NAME = "config.ini"

Row = List[Any]


@dataclass(frozen=True)
class CacheSettings:
    """Per data class time-to-live values, in seconds."""

    sales_ttl: int = 300
    customers_ttl: int = 300
    store_view_ttl: int = 30
    goals_ttl: int = 3600
    settings_ttl: int = 3600
    passwords_ttl: int = 3600
    aggregate_ttl: int = 120
    max_payload_chars: int = DEFAULT_MAX_PAYLOAD_CHARS


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    time_zone: str = DEFAULT_TIME_ZONE
    cache: CacheSettings = CacheSettings()
    session_hours: int = DEFAULT_SESSION_HOURS
    host: str = "127.0.0.1"
    port: int = 8000


class TabularSource(Protocol):
    """Abstract store of named sheets, each a grid of cell values.

    Rows and columns are 1-based, as in the spreadsheet UI. Writes are visible
    to the next read from the same process; there are no transactions.
    """

    def has_sheet(self, sheet: str) -> bool: ...

    def create_sheet(self, sheet: str, header: Sequence[Any]) -> None: ...

    def read_rows(self, sheet: str) -> List[Row]: ...

    def write_range(self, sheet: str, row: int, column: int, values: Sequence[Sequence[Any]]) -> None: ...

    def write_cell(self, sheet: str, row: int, column: int, value: Any) -> None: ...

    def append_row(self, sheet: str, values: Sequence[Any]) -> int: ...

    def delete_row(self, sheet: str, row: int) -> None: ...


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion
            and resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep option names as written
    parser.read(config_path, encoding="utf-8")
    return parser


def _get_int(parser: configparser.ConfigParser, section: str, option: str, default: int) -> int:
    raw = parser.get(section, option, fallback=None)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"[{section}] {option} must be an integer, got {raw!r}") from exc


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Only ``[System] DataFile`` and ``[System] SchemaVersion`` are required.
    ``[Cache]``, ``[Auth]`` and ``[Server]`` entries fall back to defaults
    when absent. Relative ``DataFile`` paths are anchored at ``base_path`` (or
    the working directory) and resolved.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    defaults = CacheSettings()
    cache = CacheSettings(
        sales_ttl=_get_int(parser, "Cache", "SalesTTL", defaults.sales_ttl),
        customers_ttl=_get_int(parser, "Cache", "CustomersTTL", defaults.customers_ttl),
        store_view_ttl=_get_int(parser, "Cache", "StoreViewTTL", defaults.store_view_ttl),
        goals_ttl=_get_int(parser, "Cache", "GoalsTTL", defaults.goals_ttl),
        settings_ttl=_get_int(parser, "Cache", "SettingsTTL", defaults.settings_ttl),
        passwords_ttl=_get_int(parser, "Cache", "PasswordsTTL", defaults.passwords_ttl),
        aggregate_ttl=_get_int(parser, "Cache", "AggregateTTL", defaults.aggregate_ttl),
        max_payload_chars=_get_int(parser, "Cache", "MaxPayloadChars", defaults.max_payload_chars),
    )

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        time_zone=parser.get("System", "TimeZone", fallback=DEFAULT_TIME_ZONE),
        cache=cache,
        session_hours=_get_int(parser, "Auth", "SessionHours", DEFAULT_SESSION_HOURS),
        host=parser.get("Server", "Host", fallback="127.0.0.1"),
        port=_get_int(parser, "Server", "Port", 8000),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders.

    The workbook is written to a temporary file beside ``destination`` and
    then moved over it, so readers never open a partially written file.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(handle)
    try:
        if dest.exists():
            os.chmod(temp_name, dest.stat().st_mode)
        workbook.save(temp_name)
        os.replace(temp_name, dest)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _trim_trailing_empty(rows: List[Row]) -> List[Row]:
    """Drop fully empty rows from the end of a sheet.

    Empty rows in the middle are kept so positional offsets stay aligned with
    sheet rows.
    """

    end = len(rows)
    while end > 0 and all(cell is None or cell == "" for cell in rows[end - 1]):
        end -= 1
    return rows[:end]


class WorkbookSource:
    """:class:`TabularSource` backed by an ``.xlsx`` file on disk.

    Every write is saved immediately. Before each operation the file's
    modification time is compared with the one seen at load time, and the
    workbook is reloaded when another process has saved it in between.
    Operations are serialized with a re-entrant lock because the HTTP layer
    calls one source from several worker threads.
    """

    def __init__(self, data_file: Path, *, autosave: bool = True) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self.autosave = autosave
        self._workbook: Optional[Workbook] = None
        self._mtime: Optional[float] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def workbook(self) -> Workbook:
        with self._lock:
            current = self._disk_mtime()
            if self._workbook is None or (current is not None and current != self._mtime):
                if self._workbook is not None:
                    log.info("Workbook '%s' changed on disk; reloading", self.data_file)
                self._workbook = open_workbook(self.data_file)
                self._mtime = current
            return self._workbook

    def _disk_mtime(self) -> Optional[float]:
        try:
            return self.data_file.stat().st_mtime
        except FileNotFoundError:
            return None

    def save(self) -> None:
        """Write the in-memory workbook back to its file."""

        with self._lock:
            if self._workbook is None:
                return
            save_workbook(self._workbook, self.data_file)
            self._mtime = self._disk_mtime()
        log.debug("Persisted workbook '%s'", self.data_file)

    def refresh(self) -> None:
        """Discard the in-memory workbook so the next access reloads it."""

        with self._lock:
            self._workbook = None
            self._mtime = None

    def _after_write(self) -> None:
        if self.autosave:
            self.save()

    # ------------------------------------------------------------------
    # Sheet operations
    # ------------------------------------------------------------------

    def sheet_names(self) -> List[str]:
        with self._lock:
            return list(self.workbook.sheetnames)

    def has_sheet(self, sheet: str) -> bool:
        with self._lock:
            return sheet in self.workbook.sheetnames

    def _sheet(self, sheet: str):
        workbook = self.workbook
        if sheet not in workbook.sheetnames:
            raise KeyError(f"Sheet not found: {sheet}")
        return workbook[sheet]

    def create_sheet(self, sheet: str, header: Sequence[Any]) -> None:
        """Create ``sheet`` with a bold ``header`` row; no-op if it exists."""

        with self._lock:
            workbook = self.workbook
            if sheet in workbook.sheetnames:
                return
            worksheet = workbook.create_sheet(title=sheet)
            bold_font = Font(bold=True)
            for column_index, title in enumerate(header, start=1):
                cell = worksheet.cell(row=1, column=column_index, value=title)
                cell.font = bold_font
            self._after_write()
        log.info("Created sheet '%s' in '%s'", sheet, self.data_file)

    def read_rows(self, sheet: str) -> List[Row]:
        """Return every row of ``sheet``, header included, as lists of values.

        Raises:
            KeyError: If the sheet does not exist.
        """

        with self._lock:
            worksheet = self._sheet(sheet)
            rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
        return _trim_trailing_empty(rows)

    def write_range(self, sheet: str, row: int, column: int, values: Sequence[Sequence[Any]]) -> None:
        """Write a rectangular block whose top-left cell is (``row``, ``column``)."""

        with self._lock:
            worksheet = self._sheet(sheet)
            for row_offset, row_values in enumerate(values):
                for column_offset, value in enumerate(row_values):
                    worksheet.cell(row=row + row_offset, column=column + column_offset, value=value)
            self._after_write()

    def write_cell(self, sheet: str, row: int, column: int, value: Any) -> None:
        with self._lock:
            worksheet = self._sheet(sheet)
            worksheet.cell(row=row, column=column, value=value)
            self._after_write()

    def append_row(self, sheet: str, values: Sequence[Any]) -> int:
        """Append ``values`` after the last non-empty row and return its row number."""

        with self._lock:
            worksheet = self._sheet(sheet)
            target = len(_trim_trailing_empty([list(r) for r in worksheet.iter_rows(values_only=True)])) + 1
            for column_index, value in enumerate(values, start=1):
                worksheet.cell(row=target, column=column_index, value=value)
            self._after_write()
        return target

    def delete_row(self, sheet: str, row: int) -> None:
        with self._lock:
            worksheet = self._sheet(sheet)
            worksheet.delete_rows(row)
            self._after_write()
