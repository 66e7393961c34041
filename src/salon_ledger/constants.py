"""Enumerations and well-known names shared across Salon Ledger modules.

Sheet titles and header keywords live in :mod:`salon_ledger.schema` because
they vary per deployment. This module only holds identifiers the code itself
depends on: roles, cache keys, action names and stored blob keys.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Serialized cache payloads above this many characters are not stored.
DEFAULT_MAX_PAYLOAD_CHARS = 100_000

DEFAULT_SESSION_HOURS = 24
# Expired session rows are swept once every this many logins.
DEFAULT_SESSION_PURGE_INTERVAL = 50
DEFAULT_TIME_ZONE = "Asia/Tokyo"


class Role(str, Enum):
    """Page types a session can be granted for."""

    ADMIN = "admin"
    STAFF = "staff"


class ConfigKey(str, Enum):
    """Keys of the JSON blobs kept in the auxiliary sheets."""

    GOALS = "goals"
    SALARIES = "salaries"
    PASSWORDS = "passwords"
    SETTINGS = "settings"
    STAFF = "staff"


class CacheKey(str, Enum):
    """Cache keys for every cached result set.

    Per-store customer listings are derived with :func:`store_cache_key`.
    """

    SALES = "sales"
    CUSTOMERS = "customers"
    CUSTOMERS_TODAY = "customers_today"
    GOALS = "goals"
    PASSWORDS = "passwords"
    SETTINGS = "settings"
    ALL = "all"


def store_cache_key(store: str) -> str:
    """Return the cache key of the customer listing for ``store``."""

    return f"customers_store_{store}"


class ReadAction(str, Enum):
    """Action names accepted on the read (GET) path."""

    LIST_SALES = "list-sales"
    LIST_CUSTOMERS = "list-customers"
    LIST_CUSTOMERS_FOR_TODAY = "list-customers-for-today"
    LIST_CUSTOMERS_BY_STORE = "list-customers-by-store"
    LOAD_GOALS = "load-goals"
    LOAD_PASSWORDS = "load-passwords"
    LOAD_SETTINGS = "load-settings"
    VERIFY_PASSWORD = "verify-password"
    VERIFY_SESSION = "verify-session"
    GET_ALL = "get-all"


class WriteAction(str, Enum):
    """Action names accepted on the write (POST) path."""

    UPDATE_SALES_ROWS = "update-sales-rows"
    SAVE_GOALS = "save-goals"
    ADD_SALES_RECORD = "add-sales-record"
    SAVE_PASSWORDS = "save-passwords"
    SAVE_SETTINGS = "save-settings"
    CLEAR_CACHE = "clear-cache"
    LOGOUT = "logout"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_MAX_PAYLOAD_CHARS",
    "DEFAULT_SESSION_HOURS",
    "DEFAULT_SESSION_PURGE_INTERVAL",
    "DEFAULT_TIME_ZONE",
    "Role",
    "ConfigKey",
    "CacheKey",
    "store_cache_key",
    "ReadAction",
    "WriteAction",
]
