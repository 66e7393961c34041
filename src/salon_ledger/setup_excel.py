"""Utility for initializing the Salon Ledger master workbook.

The module doubles as a script (``python -m salon_ledger.setup_excel``) and as
a library used by the CLI and tests, so the bootstrap logic is the same on
every path.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .schema import CONFIG_HEADER, SESSION_HEADER, SheetSchema, default_schema


def sheet_layout(schema: SheetSchema) -> Dict[str, Sequence[str]]:
    """Return ``{sheet title: header}`` for every sheet the ledger uses."""

    layout: Dict[str, Sequence[str]] = {schema.sales_sheet: schema.sales_header}
    for store in schema.stores:
        layout[schema.intake_sheet_for(store)] = schema.intake_header
    for sheet in schema.config_sheets.values():
        layout.setdefault(sheet, CONFIG_HEADER)
    layout[schema.sessions_sheet] = SESSION_HEADER
    return layout


def create_master_workbook(
    destination: Path,
    *,
    schema: Optional[SheetSchema] = None,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination`` with bold header rows.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    schema = schema if schema is not None else default_schema()
    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_layout(schema).items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook '%s'", destination)
    return destination


def run_from_config(config_path: Optional[Path] = None, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config.ini``."""

    located = Path(data_manager.find_config_file(config_path)).expanduser().resolve()
    parser = data_manager.read_config(located)
    settings = data_manager.parse_settings(parser, base_path=located.parent)
    return create_master_workbook(
        settings.data_file,
        schema=default_schema(time_zone=settings.time_zone),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the Salon Ledger workbook")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: search upward for config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    try:
        output_path = run_from_config(args.config, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        log.error("%s", exc)
        return 1
    except FileExistsError as exc:
        log.error("%s. Run with --force to overwrite the existing file if appropriate.", exc)
        return 1
    except OSError as exc:
        log.error("Unable to write workbook: %s", exc)
        return 1

    print(f"Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
