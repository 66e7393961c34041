"""Command-line entry points for Salon Ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the service layer. The same parser
configuration is reused by tests.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

import uvicorn

from . import api, log, service, setup_excel
from .constants import Role
from .errors import LedgerError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    Commands with ``requires_context=False`` run before any workbook is
    opened and receive ``None`` as their context.
    """

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[Any, argparse.Namespace], int]
    requires_context: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="salon-ledger",
        description="Command-line tools for the Salon Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upward from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    admin_specs = register_admin_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*admin_specs.values(), *read_specs.values()])


def register_admin_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that set up, serve or change the ledger."""
    specs = {
        "init-workbook": register_init_workbook_command(),
        "serve": register_serve_command(),
        "set-password": register_set_password_command(),
        "purge-sessions": register_purge_sessions_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only listing commands."""
    specs = {
        "sales": register_sales_command(),
        "customers": register_customers_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_init_workbook_command() -> CommandSpec:
    """Register the parser and executor for ``init-workbook``."""
    name = "init-workbook"
    help_text = "Create the master workbook named in config.ini."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing workbook.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init_workbook, requires_context=False)


def register_serve_command() -> CommandSpec:
    """Register the parser and executor for ``serve``."""
    name = "serve"
    help_text = "Serve the JSON API over HTTP."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--host", default=None, help="Bind address (defaults to [Server] Host).")
        parser.add_argument("--port", type=int, default=None, help="Port (defaults to [Server] Port).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_serve)


def register_set_password_command() -> CommandSpec:
    """Register the parser and executor for ``set-password``."""
    name = "set-password"
    help_text = "Store a hashed password for the admin page or a store's staff page."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--role", required=True, choices=[role.value for role in Role])
        parser.add_argument("--store", default=None, help="Store id or alias; required for staff.")
        parser.add_argument("--staff", default=None, help="Staff member; omit for a store-wide password.")
        parser.add_argument("--password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_password)


def register_purge_sessions_command() -> CommandSpec:
    """Register the parser and executor for ``purge-sessions``."""
    name = "purge-sessions"
    help_text = "Delete expired sessions from the Sessions sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purge_sessions)


def register_sales_command() -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Print the sales log as JSON."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_customers_command() -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    name = "customers"
    help_text = "Print customer intake responses as JSON."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--store", default=None, help="Limit to one store (id or alias).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_customers_report)


def load_runtime_context(config_path: Optional[Path] = None) -> service.RuntimeContext:
    """Resolve the runtime context for CLI operations and check its schema."""
    context = service.load_runtime_context(config_path)
    service.ensure_schema_version(context)
    return context


def dispatch_command(
    context: Optional[service.RuntimeContext],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    if spec.requires_context and context is None:
        raise RuntimeError(f"Command '{spec.name}' needs a loaded workbook")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def run_init_workbook(context: Optional[service.RuntimeContext], args: argparse.Namespace) -> int:
    """Create the workbook from config.ini."""
    output_path = setup_excel.run_from_config(getattr(args, "config", None), overwrite=args.force)
    print(f"Created master workbook at '{output_path}'.")
    return 0


def run_serve(context: service.RuntimeContext, args: argparse.Namespace) -> int:
    """Run the HTTP API until interrupted."""
    host = args.host or context.settings.host
    port = args.port or context.settings.port
    log.info("Serving Salon Ledger on %s:%d", host, port)
    uvicorn.run(api.create_app(context), host=host, port=port)
    return 0


def run_set_password(context: service.RuntimeContext, args: argparse.Namespace) -> int:
    """Hash and store a page password."""
    path = service.set_password(context, args.role, args.password, store=args.store, staff=args.staff)
    print(f"Password set for {'/'.join(path)}.")
    return 0


def run_purge_sessions(context: service.RuntimeContext, args: argparse.Namespace) -> int:
    """Delete expired sessions and report how many went."""
    removed = service.purge_sessions(context)
    print(f"Removed {removed} expired session(s).")
    return 0


def run_sales_report(context: service.RuntimeContext, args: argparse.Namespace) -> int:
    print_json(service.list_sales(context, nocache=True))
    return 0


def run_customers_report(context: service.RuntimeContext, args: argparse.Namespace) -> int:
    if args.store:
        print_json(service.list_customers_by_store(context, args.store, nocache=True))
    else:
        print_json(service.list_customers(context, nocache=True))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, LedgerError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        spec = command_table.get(args.command)
        context = None
        if spec is None or spec.requires_context:
            context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
