"""Utility for initializing the Already Dead data workbook.

The module doubles as a script (``already-dead-setup``) and as a library used
by tests. Worksheet titles come from ``config.ini`` and headers from the data
layer's collection schemas, so a freshly created workbook always matches what
the CLI reads.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import DEFAULT_SHEET_NAMES, Collection

CONFIG_FILE = "config.ini"

# Column headers per collection, in worksheet order.
SHEET_COLUMNS: Mapping[Collection, List[str]] = {
    collection: schema.headers for collection, schema in data_manager.SCHEMAS.items()
}


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` and produce :class:`~data_manager.ConfigSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)


def create_master_workbook(
    destination: Path,
    *,
    sheet_names: Optional[Mapping[Collection, str]] = None,
    sheet_columns: Mapping[Collection, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty data workbook at ``destination``.

    Each collection gets one worksheet with a bold header row. ``sheet_names``
    overrides the default worksheet titles. When ``overwrite`` is ``False``
    (the default) this function raises ``FileExistsError`` if the target
    already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    titles: Dict[Collection, str] = dict(DEFAULT_SHEET_NAMES)
    titles.update(sheet_names or {})

    bold_font = Font(bold=True)

    for collection, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=titles[collection])
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook.save(destination)
    log.info("Created workbook '%s' with %d sheet(s)", destination, len(sheet_columns))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini`` using its sheet titles."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        sheet_names=settings.collections,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="already-dead-setup", description="Initialize the Already Dead data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
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
    config_path = Path(args.config).expanduser().resolve()

    print("--- Already Dead Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
