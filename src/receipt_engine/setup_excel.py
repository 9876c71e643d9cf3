"""Utility for initializing the receipts workbook.

The module doubles as a script (``receipts-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from .constants import SheetName

# Column order here is the column order the data layer serializes to.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "SupplierName",
        "IsActive",
    ],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "IsActive",
    ],
    SheetName.RECEIPTS.value: [
        "ReceiptID",
        "ReceiptNumber",
        "SupplierID",
        "Status",
        "PurchaseDate",
        "SupplierBillNumber",
        "Notes",
        "BillDiscountAmount",
        "BillDiscountPercentage",
        "TotalAmount",
        "CreatedByID",
        "CreatedAt",
        "UpdatedAt",
        "Version",
    ],
    SheetName.RECEIPT_ITEMS.value: [
        "ItemID",
        "ReceiptID",
        "ProductID",
        "Quantity",
        "UnitCost",
        "ItemDiscountAmount",
        "ItemDiscountPercentage",
        "LineTotal",
    ],
    SheetName.STOCK_BATCHES.value: [
        "BatchID",
        "ProductID",
        "SupplierID",
        "Quantity",
        "AvailableQuantity",
        "CostPrice",
        "ReceivedDate",
        "BatchNumber",
        "Notes",
        "IsActive",
    ],
    SheetName.STOCK_MOVEMENTS.value: [
        "MovementID",
        "ProductID",
        "BatchID",
        "MovementType",
        "Quantity",
        "UnitCost",
        "TotalCost",
        "ReferenceType",
        "ReferenceID",
        "UserID",
        "Notes",
        "CreatedAt",
    ],
    SheetName.INVENTORY.value: [
        "InventoryID",
        "ProductID",
        "Quantity",
        "ReorderLevel",
        "MaxLevel",
        "UpdatedAt",
    ],
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    store_name: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, matching the data layer.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, store_name=store_name)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty receipts workbook at ``destination``.

    Every sheet gets a bold header row and no data. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing receipts workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="receipts-setup", description="Initialize the receipts workbook")
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

    print("--- Receipt Engine Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created receipts workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
