"""Shared pytest fixtures and utilities for Salon Ledger tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator, List, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from salon_ledger import constants, data_manager, service  # noqa: E402
from salon_ledger.cache import MemoryBackend  # noqa: E402
from salon_ledger.schema import default_schema  # noqa: E402
from salon_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
# 10:00 in Tokyo.
DEFAULT_NOW = datetime(2026, 10, 18, 1, 0, tzinfo=UTC)

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n"
    "TimeZone = Asia/Tokyo\n\n"
    "[Cache]\n"
    "SalesTTL = 300\n"
    "StoreViewTTL = 30\n\n"
    "[Auth]\n"
    "SessionHours = {session_hours}\n"
)


class FakeClock:
    """Callable clock returning a controllable aware datetime."""

    def __init__(self, moment: datetime = DEFAULT_NOW) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **delta: float) -> datetime:
        self.moment = self.moment + timedelta(**delta)
        return self.moment

    def set(self, moment: datetime) -> None:
        self.moment = moment


class FakeTimer:
    """Monotonic-style timer for the cache backend."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "salon_ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        session_hours: int = 24,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                schema_version=schema_version,
                session_hours=session_hours,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def runtime_context(config_file: Path, clock: FakeClock, timer: FakeTimer) -> service.RuntimeContext:
    """Load a runtime context through the public API with fake time sources."""

    loaded = service.load_runtime_context(config_file, clock=clock)
    service.ensure_schema_version(loaded)
    return service.build_runtime_context(
        loaded.settings,
        loaded.source,
        backend=MemoryBackend(timer=timer),
        clock=clock,
    )


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Default settings pointing at a not-yet-created workbook."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "salon_ledger.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def schema():
    return default_schema()


def sales_row(
    date: Any = "2026/10/18",
    store: Any = "千葉店",
    staff: Any = "Yui",
    *,
    record_id: Any = None,
    cash: Any = "",
    credit: Any = "",
    qr: Any = "",
    product: Any = "",
    new_primary: Any = "",
    review: Any = "",
) -> List[Any]:
    """Build a row laid out like the default sales header."""

    row: List[Any] = [None] * len(default_schema().sales_header)
    row[0] = record_id
    row[1] = date
    row[2] = store
    row[3] = staff
    row[4] = cash
    row[5] = credit
    row[6] = qr
    row[7] = product
    row[12] = new_primary
    row[20] = review
    return row


def intake_row(date: Any = "2026/10/18 9:30", name: Any = "山田 花子", **fields: Any) -> List[Any]:
    """Build a row laid out like the default intake header."""

    columns = {
        "kana": 2,
        "gender": 3,
        "birthday": 4,
        "phone": 5,
        "email": 6,
        "address": 7,
        "notes": 15,
    }
    row: List[Any] = [None] * len(default_schema().intake_header)
    row[0] = date
    row[1] = name
    for key, value in fields.items():
        row[columns[key]] = value
    return row


def fill_sheet(context: service.RuntimeContext, sheet: str, rows: Sequence[Sequence[Any]]) -> None:
    """Write ``rows`` below the header of ``sheet``."""

    context.source.write_range(sheet, 2, 1, rows)
