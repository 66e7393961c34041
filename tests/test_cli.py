"""Tests for the argparse command layer."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from salon_ledger import cli, service
from salon_ledger.config_store import ConfigStore
from salon_ledger.constants import ConfigKey
from salon_ledger.data_manager import WorkbookSource
from salon_ledger.errors import AuthenticationError, MissingSheetError
from salon_ledger.schema import default_schema


def _parse(argv: list[str]) -> tuple[argparse.Namespace, dict]:
    parser = cli.build_parser()
    table = cli.configure_subcommands(parser)
    return parser.parse_args(argv), dict(table)


def test_all_commands_registered():
    _, table = _parse(["sales"])

    assert set(table) == {"init-workbook", "serve", "set-password", "purge-sessions", "sales", "customers"}
    assert table["init-workbook"].requires_context is False
    assert table["sales"].requires_context is True


def test_set_password_arguments():
    args, _ = _parse(["set-password", "--role", "staff", "--store", "chiba", "--staff", "yui", "--password", "pw"])

    assert (args.role, args.store, args.staff, args.password) == ("staff", "chiba", "yui", "pw")


def test_set_password_rejects_unknown_role():
    with pytest.raises(SystemExit):
        _parse(["set-password", "--role", "owner", "--password", "pw"])


def test_build_command_table_rejects_duplicates():
    spec = cli.CommandSpec("dup", "help", lambda subparsers: subparsers.add_parser("dup"), lambda *_: 0)

    with pytest.raises(ValueError):
        cli.build_command_table([spec, spec])


def test_dispatch_unknown_command_raises():
    with pytest.raises(KeyError):
        cli.dispatch_command(None, argparse.Namespace(command="nope"), {})


def test_dispatch_refuses_context_command_without_context():
    _, table = _parse(["sales"])

    with pytest.raises(RuntimeError):
        cli.dispatch_command(None, argparse.Namespace(command="sales"), table)


def test_main_init_workbook_skips_context_loading(tmp_path: Path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = ledger.xlsx\nSchemaVersion = 1.0.0\n", encoding="utf-8")

    with patch.object(cli, "load_runtime_context") as load:
        assert cli.main(["--config", str(config_path), "init-workbook"]) == 0

    load.assert_not_called()


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (AuthenticationError("bad"), 2),
        (MissingSheetError("gone"), 2),
        (FileNotFoundError("missing"), 3),
        (RuntimeError("other"), 1),
    ],
)
def test_handle_cli_error_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


def test_main_init_workbook_creates_file(tmp_path: Path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = ledger.xlsx\nSchemaVersion = 1.0.0\n", encoding="utf-8")

    assert cli.main(["--config", str(config_path), "init-workbook"]) == 0
    assert (tmp_path / "ledger.xlsx").exists()
    assert "Created master workbook" in capsys.readouterr().out

    assert cli.main(["--config", str(config_path), "init-workbook"]) == 1
    assert cli.main(["--config", str(config_path), "init-workbook", "--force"]) == 0


def test_main_missing_workbook_exits_with_3(tmp_path: Path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = absent.xlsx\nSchemaVersion = 1.0.0\n", encoding="utf-8")

    assert cli.main(["--config", str(config_path), "sales"]) == 3


def test_main_sales_prints_json(config_file: Path, capsys):
    assert cli.main(["--config", str(config_file), "sales"]) == 0

    assert json.loads(capsys.readouterr().out) == []


def test_main_customers_unknown_store_exits_with_2(config_file: Path):
    assert cli.main(["--config", str(config_file), "customers", "--store", "渋谷"]) == 2


def test_main_set_password_stores_hash(config_factory, capsys):
    bundle = config_factory()

    code = cli.main(["--config", str(bundle.config_path), "set-password", "--role", "admin", "--password", "boss"])

    assert code == 0
    assert "admin" in capsys.readouterr().out
    store = ConfigStore(WorkbookSource(bundle.workbook_path), default_schema())
    assert store.load_json(ConfigKey.PASSWORDS)["admin"].startswith("$argon2")


def test_main_purge_sessions(config_file: Path, capsys):
    assert cli.main(["--config", str(config_file), "purge-sessions"]) == 0
    assert "Removed 0" in capsys.readouterr().out


def test_run_serve_uses_configured_address(runtime_context):
    args = argparse.Namespace(host=None, port=None)

    with patch.object(cli.uvicorn, "run") as run:
        assert cli.run_serve(runtime_context, args) == 0

    _, kwargs = run.call_args
    assert kwargs == {"host": "127.0.0.1", "port": 8000}


def test_run_customers_report_by_store(runtime_context, capsys):
    args = argparse.Namespace(store="chiba")

    assert cli.run_customers_report(runtime_context, args) == 0
    assert json.loads(capsys.readouterr().out) == []


def test_main_checks_schema_version(config_factory):
    bundle = config_factory(schema_version="0.0.1")

    assert cli.main(["--config", str(bundle.config_path), "sales"]) == 1


def test_load_runtime_context_wraps_service(config_file: Path):
    with patch.object(service, "load_runtime_context", return_value=Mock(settings=Mock(schema_version="1.0.0"))) as load:
        cli.load_runtime_context(config_file)

    load.assert_called_once_with(config_file)
