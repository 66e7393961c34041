"""Action dispatch for the read and write request paths.

Handlers return plain payloads; the router wraps them in :class:`Ok` or turns
any exception into :class:`Err`, so nothing escapes to the transport layer.
:func:`to_envelope` renders either result in the ``{"status": ...}`` shape the
dashboard already understands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Union

from . import log, service
from .constants import ReadAction, WriteAction
from .errors import InvalidRequestError, LedgerError


@dataclass(frozen=True)
class Ok:
    payload: Any
    kind: str = field(default="ok", init=False)


@dataclass(frozen=True)
class Err:
    message: str
    kind: str = field(default="error", init=False)


Result = Union[Ok, Err]

Handler = Callable[[service.RuntimeContext, Mapping[str, Any]], Any]


@dataclass(frozen=True)
class ActionSpec:
    """Bind an action name to the service call that serves it."""

    name: str
    handler: Handler


def build_action_table(specs: Iterable[ActionSpec]) -> MutableMapping[str, ActionSpec]:
    table: Dict[str, ActionSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate action name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_flag(value: Any) -> bool:
    """Interpret query-string booleans such as ``nocache=true``."""

    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _nocache(params: Mapping[str, Any]) -> bool:
    return parse_flag(params.get("nocache"))


# ---------------------------------------------------------------------------
# Read handlers
# ---------------------------------------------------------------------------

def _list_sales(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return {"data": service.list_sales(context, nocache=_nocache(params))}


def _list_customers(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return {"data": service.list_customers(context, nocache=_nocache(params))}


def _list_customers_for_today(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return {"data": service.list_customers_for_today(context, nocache=_nocache(params))}


def _list_customers_by_store(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    store = params.get("store")
    if not store:
        raise InvalidRequestError("store is required")
    return {"data": service.list_customers_by_store(context, store, nocache=_nocache(params))}


def _load_goals(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return service.load_goals(context, nocache=_nocache(params))


def _load_passwords(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return service.load_passwords(context, nocache=_nocache(params))


def _load_settings(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return service.load_settings(context, nocache=_nocache(params))


def _verify_password(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return service.verify_password(
        context,
        params.get("pageType"),
        params.get("store"),
        params.get("staff"),
        params.get("password"),
    )


def _verify_session(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return service.verify_session(context, params.get("token"), params.get("pageType"))


def _get_all(context: service.RuntimeContext, params: Mapping[str, Any]) -> Any:
    return service.get_all(context, nocache=_nocache(params))


READ_ACTIONS = build_action_table(
    [
        ActionSpec(ReadAction.LIST_SALES.value, _list_sales),
        ActionSpec(ReadAction.LIST_CUSTOMERS.value, _list_customers),
        ActionSpec(ReadAction.LIST_CUSTOMERS_FOR_TODAY.value, _list_customers_for_today),
        ActionSpec(ReadAction.LIST_CUSTOMERS_BY_STORE.value, _list_customers_by_store),
        ActionSpec(ReadAction.LOAD_GOALS.value, _load_goals),
        ActionSpec(ReadAction.LOAD_PASSWORDS.value, _load_passwords),
        ActionSpec(ReadAction.LOAD_SETTINGS.value, _load_settings),
        ActionSpec(ReadAction.VERIFY_PASSWORD.value, _verify_password),
        ActionSpec(ReadAction.VERIFY_SESSION.value, _verify_session),
        ActionSpec(ReadAction.GET_ALL.value, _get_all),
    ]
)


# ---------------------------------------------------------------------------
# Write handlers
# ---------------------------------------------------------------------------

WRITE_ACTIONS = build_action_table(
    [
        ActionSpec(
            WriteAction.UPDATE_SALES_ROWS.value,
            lambda context, body: service.update_sales_rows(context, body.get("rows")),
        ),
        ActionSpec(
            WriteAction.SAVE_GOALS.value,
            lambda context, body: service.save_goals(context, body.get("goals"), body.get("salaries")),
        ),
        ActionSpec(
            WriteAction.ADD_SALES_RECORD.value,
            lambda context, body: service.add_sales_record(context, body.get("record")),
        ),
        ActionSpec(
            WriteAction.SAVE_PASSWORDS.value,
            lambda context, body: service.save_passwords(context, body.get("passwords")),
        ),
        ActionSpec(
            WriteAction.SAVE_SETTINGS.value,
            lambda context, body: service.save_settings(context, body.get("settings"), body.get("staff")),
        ),
        ActionSpec(WriteAction.CLEAR_CACHE.value, lambda context, body: service.clear_cache(context)),
        ActionSpec(WriteAction.LOGOUT.value, lambda context, body: service.logout(context, body.get("token"))),
    ]
)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _run(spec: ActionSpec, context: service.RuntimeContext, params: Mapping[str, Any]) -> Result:
    try:
        return Ok(spec.handler(context, params))
    except LedgerError as error:
        log.warning("Action '%s' failed: %s", spec.name, error)
        return Err(str(error))
    except Exception as error:
        log.exception("Action '%s' raised an unexpected error", spec.name)
        return Err(str(error) or error.__class__.__name__)


def dispatch_read(context: service.RuntimeContext, action: Any, params: Mapping[str, Any]) -> Result:
    """Serve a read action; unknown or missing actions list sales."""

    spec = READ_ACTIONS.get(str(action or ""))
    if spec is None:
        if action:
            log.info("Unknown read action '%s'; serving %s", action, ReadAction.LIST_SALES.value)
        spec = READ_ACTIONS[ReadAction.LIST_SALES.value]
    return _run(spec, context, params)


def dispatch_write(context: service.RuntimeContext, body: Any) -> Result:
    """Serve a write request whose JSON body names its ``action``."""

    if not isinstance(body, Mapping):
        return Err("Request body must be a JSON object")
    action = body.get("action")
    spec = WRITE_ACTIONS.get(str(action or ""))
    if spec is None:
        log.warning("Rejected unrecognized write action '%s'", action)
        return Err(f"Unrecognized action: {action}")
    return _run(spec, context, body)


def to_envelope(result: Result) -> Dict[str, Any]:
    """Render a result in the ``{"status": ...}`` wire shape."""

    if isinstance(result, Err):
        return {"status": "error", "message": result.message}
    if isinstance(result.payload, Mapping):
        return {"status": "success", **result.payload}
    return {"status": "success", "data": result.payload}
