"""Read and write operations behind the request router.

Every read goes through the response cache with the time-to-live configured
for its data class. Every write mutates the workbook first and then
invalidates each cache key that could hold data derived from what it changed,
so the next read of those keys always misses.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from . import data_manager, log
from .auth import Authenticator, SessionStore, hash_password, mask_credentials, parse_role, prepare_credentials, utcnow
from .cache import CacheBackend, ResponseCache
from .columns import ColumnMap, resolve_columns
from .config_store import ConfigStore
from .constants import EXPECTED_SCHEMA_VERSION, CacheKey, ConfigKey, Role, store_cache_key
from .errors import InvalidRequestError, MissingSheetError
from .records import (
    SalesEntry,
    build_sales_row,
    map_intake_rows,
    map_sales_rows,
    normalize_staff,
    normalize_store,
    parse_day,
    sales_changes,
)
from .schema import SheetSchema, default_schema


Clock = Callable[[], datetime]

# First data row of every record sheet; row 1 is the header.
FIRST_DATA_ROW = 2


@dataclass(frozen=True)
class RuntimeContext:
    """Everything a request needs: settings, storage, cache and auth."""

    settings: data_manager.ConfigSettings
    schema: SheetSchema
    source: data_manager.TabularSource
    cache: ResponseCache
    config_store: ConfigStore
    sessions: SessionStore
    auth: Authenticator
    clock: Clock = utcnow


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    source: data_manager.TabularSource,
    *,
    schema: Optional[SheetSchema] = None,
    backend: Optional[CacheBackend] = None,
    clock: Clock = utcnow,
) -> RuntimeContext:
    """Wire the collaborators for ``source`` according to ``settings``."""

    schema = schema if schema is not None else default_schema(time_zone=settings.time_zone)
    cache = ResponseCache(backend, max_payload_chars=settings.cache.max_payload_chars)
    config_store = ConfigStore(source, schema, clock=clock)
    sessions = SessionStore(source, schema, clock=clock, session_hours=settings.session_hours)
    return RuntimeContext(
        settings=settings,
        schema=schema,
        source=source,
        cache=cache,
        config_store=config_store,
        sessions=sessions,
        auth=Authenticator(config_store, sessions, schema),
        clock=clock,
    )


def load_runtime_context(config_path: Optional[Path] = None, *, clock: Clock = utcnow) -> RuntimeContext:
    """Resolve ``config.ini`` and open the workbook it names.

    Args:
        config_path (Path | None): Explicit configuration file. When omitted
            the search walks up from the current working directory.
        clock: Source of the current instant, replaceable in tests.

    Returns:
        RuntimeContext: Context backed by a :class:`WorkbookSource`.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    if not settings.data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {settings.data_file}")
    source = data_manager.WorkbookSource(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_runtime_context(settings, source, clock=clock)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to run against a workbook layout this code does not know.

    Raises:
        RuntimeError: If ``SchemaVersion`` in ``config.ini`` differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )
    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Sheet access
# ---------------------------------------------------------------------------

def _read_sheet(context: RuntimeContext, sheet: str) -> List[List[Any]]:
    if not context.source.has_sheet(sheet):
        log.error("Sheet '%s' is missing from the workbook", sheet)
        raise MissingSheetError(f"Sheet not found: {sheet}")
    return context.source.read_rows(sheet)


def _split_table(rows: List[List[Any]], keywords: Mapping[str, Sequence[str]]) -> Tuple[List[Any], List[List[Any]], ColumnMap]:
    header = list(rows[0]) if rows else []
    return header, rows[1:], resolve_columns(header, keywords)


def _sales_table(context: RuntimeContext) -> Tuple[List[Any], List[List[Any]], ColumnMap]:
    rows = _read_sheet(context, context.schema.sales_sheet)
    return _split_table(rows, context.schema.sales_keywords)


def _resolve_store(context: RuntimeContext, store: Any) -> str:
    store_id = normalize_store(store, context.schema.store_aliases)
    if store_id not in context.schema.stores:
        raise InvalidRequestError(f"Unknown store: {store}")
    return store_id


def load_sales_entries(context: RuntimeContext) -> List[SalesEntry]:
    """Map the sales sheet without touching the cache."""

    _, data_rows, column_map = _sales_table(context)
    return map_sales_rows(data_rows, column_map, context.schema, first_row=FIRST_DATA_ROW)


def _load_store_customers(context: RuntimeContext, store: str) -> List[Dict[str, Any]]:
    rows = _read_sheet(context, context.schema.intake_sheet_for(store))
    _, data_rows, column_map = _split_table(rows, context.schema.intake_keywords)
    return [entry.to_dict() for entry in map_intake_rows(data_rows, column_map, store, context.schema)]


def _load_all_customers(context: RuntimeContext) -> List[Dict[str, Any]]:
    customers: List[Dict[str, Any]] = []
    for store in context.schema.stores:
        customers.extend(_load_store_customers(context, store))
    return customers


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_sales(context: RuntimeContext, *, nocache: bool = False) -> List[Dict[str, Any]]:
    return context.cache.get_or_load(
        CacheKey.SALES.value,
        context.settings.cache.sales_ttl,
        lambda: [entry.to_dict() for entry in load_sales_entries(context)],
        nocache=nocache,
    )


def list_customers(context: RuntimeContext, *, nocache: bool = False) -> List[Dict[str, Any]]:
    """Intake responses from every store's sheet, in store order."""

    return context.cache.get_or_load(
        CacheKey.CUSTOMERS.value,
        context.settings.cache.customers_ttl,
        lambda: _load_all_customers(context),
        nocache=nocache,
    )


def list_customers_for_today(context: RuntimeContext, *, nocache: bool = False) -> List[Dict[str, Any]]:
    """Intake responses dated today in the schema's time zone.

    Text dates that cannot be parsed never match.
    """

    def load() -> List[Dict[str, Any]]:
        time_zone = context.schema.time_zone
        today = context.clock().astimezone(ZoneInfo(time_zone)).date()
        return [
            customer
            for customer in _load_all_customers(context)
            if parse_day(customer.get("date"), time_zone) == today
        ]

    return context.cache.get_or_load(
        CacheKey.CUSTOMERS_TODAY.value,
        context.settings.cache.store_view_ttl,
        load,
        nocache=nocache,
    )


def list_customers_by_store(context: RuntimeContext, store: Any, *, nocache: bool = False) -> List[Dict[str, Any]]:
    """Intake responses of one store; ``store`` may be any known alias.

    Raises:
        InvalidRequestError: If ``store`` names no configured store.
    """

    store_id = _resolve_store(context, store)
    return context.cache.get_or_load(
        store_cache_key(store_id),
        context.settings.cache.store_view_ttl,
        lambda: _load_store_customers(context, store_id),
        nocache=nocache,
    )


def load_goals(context: RuntimeContext, *, nocache: bool = False) -> Dict[str, Any]:
    def load() -> Dict[str, Any]:
        return {
            "goals": context.config_store.load_json(ConfigKey.GOALS),
            "salaries": context.config_store.load_json(ConfigKey.SALARIES),
        }

    return context.cache.get_or_load(CacheKey.GOALS.value, context.settings.cache.goals_ttl, load, nocache=nocache)


def load_settings(context: RuntimeContext, *, nocache: bool = False) -> Dict[str, Any]:
    def load() -> Dict[str, Any]:
        return {
            "settings": context.config_store.load_json(ConfigKey.SETTINGS),
            "staff": context.config_store.load_json(ConfigKey.STAFF, []),
        }

    return context.cache.get_or_load(
        CacheKey.SETTINGS.value, context.settings.cache.settings_ttl, load, nocache=nocache
    )


def load_passwords(context: RuntimeContext, *, nocache: bool = False) -> Dict[str, Any]:
    """Return the credential set with every configured secret shown as ``true``.

    Hashes never leave the workbook, and only the masked form is cached.
    """

    return context.cache.get_or_load(
        CacheKey.PASSWORDS.value,
        context.settings.cache.passwords_ttl,
        lambda: {"passwords": mask_credentials(context.config_store.load_json(ConfigKey.PASSWORDS))},
        nocache=nocache,
    )


def verify_password(context: RuntimeContext, page_type: Any, store: Any, staff: Any, password: Optional[str]) -> Dict[str, Any]:
    """Check a page password and return the new session's token and expiry."""

    grant = context.auth.verify_password(page_type, store, staff, password)
    # A legacy secret may have been re-hashed in place.
    context.cache.invalidate(CacheKey.PASSWORDS.value)
    return grant.to_dict()


def verify_session(context: RuntimeContext, token: Optional[str], page_type: Any) -> Dict[str, Any]:
    session = context.auth.verify_session(token, page_type)
    return {"valid": True, **session.to_dict()}


def get_all(context: RuntimeContext, *, nocache: bool = False) -> Dict[str, Any]:
    """Sales, customers, goals and settings in one payload for the dashboard."""

    def load() -> Dict[str, Any]:
        return {
            "sales": list_sales(context, nocache=nocache),
            "customers": list_customers(context, nocache=nocache),
            **load_goals(context, nocache=nocache),
            **load_settings(context, nocache=nocache),
        }

    return context.cache.get_or_load(CacheKey.ALL.value, context.settings.cache.aggregate_ttl, load, nocache=nocache)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def _invalidate(context: RuntimeContext, *keys: CacheKey) -> None:
    context.cache.invalidate_all(key.value for key in keys)


def all_cache_keys(schema: SheetSchema) -> List[str]:
    """Every key a read path can populate, per-store views included."""

    return [key.value for key in CacheKey] + [store_cache_key(store) for store in schema.stores]


def update_sales_rows(context: RuntimeContext, rows: Any) -> Dict[str, Any]:
    """Patch sales rows matched by ``id`` and write the table back whole.

    Only the fields present in each patch change. The full data block is
    read, patched in memory and written back in one range, so edits saved by
    another writer in between are lost.

    Returns:
        dict: ``updated`` count and the ``missing`` ids that matched no row.

    Raises:
        InvalidRequestError: If ``rows`` is not a list of objects with ``id``.
    """

    if not isinstance(rows, list) or not all(isinstance(row, Mapping) and "id" in row for row in rows):
        raise InvalidRequestError("rows must be a list of objects with an id")

    header, data_rows, column_map = _sales_table(context)
    entries = map_sales_rows(data_rows, column_map, context.schema, first_row=FIRST_DATA_ROW)
    by_id: Dict[str, SalesEntry] = {}
    for entry in entries:
        by_id.setdefault(entry.id, entry)

    width = max([len(header)] + [len(row) for row in data_rows])
    table = [list(row) + [None] * (width - len(row)) for row in data_rows]
    updated = 0
    missing: List[str] = []
    for patch in rows:
        record_id = str(patch["id"])
        entry = by_id.get(record_id)
        if entry is None:
            missing.append(record_id)
            continue
        target = table[entry.row - FIRST_DATA_ROW]
        for index, value in sales_changes(patch, column_map, context.schema.time_zone).items():
            target[index] = value
        updated += 1

    if updated:
        context.source.write_range(context.schema.sales_sheet, FIRST_DATA_ROW, 1, table)
        log.info("Updated %d sales rows", updated)
    if missing:
        log.warning("Sales rows not found for ids: %s", ", ".join(missing))
    _invalidate(context, CacheKey.SALES, CacheKey.ALL)
    return {"updated": updated, "missing": missing}


def add_sales_record(context: RuntimeContext, record: Any) -> Dict[str, Any]:
    """Append one sales record.

    When the sheet has a record-id column and the record carries no id, a new
    one is generated so the entry keeps its identity if rows move.

    Raises:
        InvalidRequestError: If the record lacks date, store or staff, or the
            sheet has no column for one of them.
    """

    if not isinstance(record, Mapping):
        raise InvalidRequestError("record must be an object")
    if not all(str(record.get(name) or "").strip() for name in ("date", "store", "staff")):
        raise InvalidRequestError("record requires date, store and staff")

    header, _, column_map = _sales_table(context)
    unresolved = [name for name in ("date", "store", "staff") if column_map.get(name) is None]
    if unresolved:
        raise InvalidRequestError(f"Sales sheet has no column for: {', '.join(unresolved)}")

    payload = dict(record)
    payload["staff"] = normalize_staff(payload["staff"])
    has_id_column = column_map.get("id") is not None
    if has_id_column and not str(payload.get("id") or "").strip():
        payload["id"] = uuid.uuid4().hex

    row = build_sales_row(payload, column_map, len(header), context.schema.time_zone)
    row_number = context.source.append_row(context.schema.sales_sheet, row)
    record_id = str(payload["id"]) if has_id_column else str(row_number - FIRST_DATA_ROW + 1)
    log.info("Appended sales record '%s' at row %d", record_id, row_number)
    _invalidate(context, CacheKey.SALES, CacheKey.ALL)
    return {"id": record_id, "row": row_number}


def save_goals(context: RuntimeContext, goals: Any, salaries: Any = None) -> Dict[str, Any]:
    if goals is None and salaries is None:
        raise InvalidRequestError("goals or salaries is required")
    if goals is not None:
        context.config_store.save_json(ConfigKey.GOALS, goals)
    if salaries is not None:
        context.config_store.save_json(ConfigKey.SALARIES, salaries)
    _invalidate(context, CacheKey.GOALS, CacheKey.ALL)
    return {"message": "Goals saved"}


def save_settings(context: RuntimeContext, settings: Any, staff: Any = None) -> Dict[str, Any]:
    if settings is None:
        raise InvalidRequestError("settings is required")
    context.config_store.save_json(ConfigKey.SETTINGS, settings)
    if staff is not None:
        context.config_store.save_json(ConfigKey.STAFF, staff)
    _invalidate(context, CacheKey.SETTINGS, CacheKey.ALL)
    return {"message": "Settings saved"}


def save_passwords(context: RuntimeContext, passwords: Any) -> Dict[str, Any]:
    """Replace the credential set; see :func:`prepare_credentials` for leaf rules."""

    if not isinstance(passwords, Mapping):
        raise InvalidRequestError("passwords must be an object")
    existing = context.config_store.load_json(ConfigKey.PASSWORDS)
    prepared = prepare_credentials(passwords, existing)
    context.config_store.save_json(ConfigKey.PASSWORDS, prepared)
    _invalidate(context, CacheKey.PASSWORDS)
    return {"message": "Passwords saved", "passwords": mask_credentials(prepared)}


def set_password(context: RuntimeContext, role: Any, password: str, *, store: Any = None, staff: Any = None) -> Tuple[str, ...]:
    """Set one secret in the credential set and return where it was stored.

    Staff secrets are store-wide unless ``staff`` is given.
    """

    page = parse_role(role)
    if not password:
        raise InvalidRequestError("password must not be empty")
    credentials = context.config_store.load_json(ConfigKey.PASSWORDS)
    if not isinstance(credentials, dict):
        credentials = {}

    if page is Role.ADMIN:
        path: Tuple[str, ...] = ("admin",)
        credentials["admin"] = hash_password(password)
    else:
        store_id = _resolve_store(context, store)
        stores = credentials.setdefault("stores", {})
        staff_id = normalize_staff(staff)
        if staff_id:
            scoped = stores.get(store_id)
            if not isinstance(scoped, dict):
                scoped = {}
                stores[store_id] = scoped
            scoped[staff_id] = hash_password(password)
            path = ("stores", store_id, staff_id)
        else:
            stores[store_id] = hash_password(password)
            path = ("stores", store_id)

    context.config_store.save_json(ConfigKey.PASSWORDS, credentials)
    _invalidate(context, CacheKey.PASSWORDS)
    log.info("Password set at %s", "/".join(path))
    return path


def clear_cache(context: RuntimeContext) -> Dict[str, Any]:
    keys = all_cache_keys(context.schema)
    context.cache.invalidate_all(keys)
    context.cache.clear()
    log.info("Cleared response cache")
    return {"message": "Cache cleared"}


def logout(context: RuntimeContext, token: Optional[str]) -> Dict[str, Any]:
    return {"revoked": context.auth.logout(token)}


def purge_sessions(context: RuntimeContext) -> int:
    return context.sessions.purge_expired()
