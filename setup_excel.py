"""Utility for initializing the POS store workbook.

The module doubles as a script (``python setup_excel.py``) and as a library
used by tests or other tooling. Shared helpers keep the workbook bootstrap
logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, MutableMapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

# Column order must match the serializers in pos_engine.data_manager
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    "Products": [
        "ProductID",
        "ProductName",
        "UnitPrice",
        "UnitCost",
        "Category",
    ],
    "Stock": [
        "ProductID",
        "WarehouseID",
        "Quantity",
    ],
    "Promotions": [
        "PromotionID",
        "Name",
        "TargetType",
        "TargetValue",
        "DiscountKind",
        "Value",
        "StartDate",
        "EndDate",
    ],
    "Customers": [
        "CustomerID",
        "CustomerName",
    ],
    "CashSessions": [
        "SessionID",
        "WarehouseID",
        "OpeningBalance",
        "OpenedAt",
        "ClosedAt",
        "Status",
    ],
    "Invoices": [
        "InvoiceID",
        "CustomerID",
        "CustomerName",
        "IssueDate",
        "DueDate",
        "Status",
        "PaymentMethod",
        "PaymentDate",
        "Subtotal",
        "Discount",
        "Tax",
        "Total",
        "WarehouseID",
        "CashSessionID",
    ],
    "InvoiceLines": [
        "InvoiceID",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "Subtotal",
        "Discount",
        "PromotionName",
        "Tax",
        "Total",
    ],
    "CashClosings": [
        "SessionID",
        "ClosedAt",
        "OpeningBalance",
        "TotalSystemSales",
        "TotalCountedSales",
        "TotalDifference",
    ],
    "CashClosingLines": [
        "SessionID",
        "PaymentMethod",
        "Expected",
        "Counted",
        "Difference",
    ],
}

# Walk-in customer every bill starts with
DEFAULT_CUSTOMER: MutableMapping[str, object] = {
    "CustomerID": "1",
    "CustomerName": "Consumidor Final",
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    walk_in_customer_id: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, the same way the terminal resolves them.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")

    try:
        data_file_raw = parser.get("System", "DataFile")
        walk_in_customer_id = parser.get("Defaults", "WalkInCustomer")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(
        data_file=data_file_path,
        walk_in_customer_id=walk_in_customer_id,
    )


def create_master_workbook(
    destination: Path,
    *,
    walk_in_customer_id: str = "1",
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    default_customer_template: Mapping[str, object] = DEFAULT_CUSTOMER,
    overwrite: bool = False,
) -> Path:
    """Create the store workbook at ``destination``.

    Every sheet gets a bold header row and ``Customers`` gets the walk-in
    customer. When ``overwrite`` is ``False`` (the default) this function
    raises ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing store workbook: {destination}"
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

    customers_sheet = workbook["Customers"]
    default_customer = dict(default_customer_template)
    default_customer["CustomerID"] = walk_in_customer_id
    customers_sheet.append(
        [
            default_customer["CustomerID"],
            default_customer["CustomerName"],
        ]
    )

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        walk_in_customer_id=settings.walk_in_customer_id,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the POS store workbook")
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

    print("--- POS Store Setup ---")
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
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created store workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
