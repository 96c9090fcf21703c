"""Utility for initializing the lounge settlement workbook.

The module doubles as a script (``python -m lounge_settlement.setup_excel``)
and as a library used by tests or other tooling. Shared helpers keep the
workbook bootstrap logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .data_manager import SHEET_COLUMNS, ProductRow

CONFIG_FILE = "config.ini"


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    products: Iterable[ProductRow] = (),
    overwrite: bool = False,
) -> Path:
    """Create the lounge workbook at ``destination``.

    Every sheet gets a bold header row. ``products`` seeds the ``Products``
    sheet so counters exist before the first void. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    workbook.remove(workbook.active)
    header_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(columns))
        for cell in worksheet[1]:
            cell.font = header_font
        worksheet.freeze_panes = "A2"

    for product in products:
        data_manager.append_product(workbook, product)

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    resolved = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lounge-setup",
        description="Create an empty lounge workbook with every sheet and header row.",
    )
    parser.add_argument("--config", default=CONFIG_FILE, help="Config file naming [System] DataFile.")
    parser.add_argument("--output", type=Path, default=None, help="Write here instead of the configured DataFile.")
    parser.add_argument("--force", action="store_true", help="Replace an existing workbook.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        if args.output is not None:
            created = create_master_workbook(args.output, overwrite=args.force)
        else:
            created = run_from_config(Path(args.config), overwrite=args.force)
    except FileExistsError as exc:
        log.error("%s (pass --force to replace it)", exc)
        print(f"[ERROR] {exc}")
        return 1
    except (FileNotFoundError, KeyError, ValueError, OSError) as exc:
        log.error("Workbook setup failed: %s", exc)
        print(f"[ERROR] {exc}")
        return 1

    log.info("Created lounge workbook at '%s'", created)
    print(f"[SUCCESS] Created workbook at '{created}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual entry point
    sys.exit(main())
