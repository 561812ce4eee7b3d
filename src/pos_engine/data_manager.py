"""Data access layer for the POS engine.

This module provides low-level helpers that read from and write to the
host application's workbook (``pos_workbook.xlsx``). Pricing, tab and
checkout rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: loading the read-only catalog (products, stock,
   promotions, customers) and appending invoices, cash-session rows and
   closing reports.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    SUGGESTION_DEBOUNCE_SECONDS,
    VAT_RATE,
    CashSessionStatus,
    DiscountKind,
    InvoiceStatus,
    PaymentMethod,
    PromotionTarget,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
STOCK_SHEET = SheetName.STOCK.value
PROMOTIONS_SHEET = SheetName.PROMOTIONS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
CASH_SESSIONS_SHEET = SheetName.CASH_SESSIONS.value
INVOICES_SHEET = SheetName.INVOICES.value
INVOICE_LINES_SHEET = SheetName.INVOICE_LINES.value
CASH_CLOSINGS_SHEET = SheetName.CASH_CLOSINGS.value
CASH_CLOSING_LINES_SHEET = SheetName.CASH_CLOSING_LINES.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    warehouse_id: str
    walk_in_customer_id: str
    vat_rate: Decimal = VAT_RATE
    suggestion_debounce: float = SUGGESTION_DEBOUNCE_SECONDS


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a ``Products`` row joined with its ``Stock`` rows."""

    product_id: str
    product_name: str
    unit_price: Decimal
    unit_cost: Decimal
    category: str
    stock_by_warehouse: Mapping[str, Decimal] = field(default_factory=dict, compare=False)

    def stock_in(self, warehouse_id: str) -> Decimal:
        return self.stock_by_warehouse.get(warehouse_id, Decimal("0"))


@dataclass(frozen=True)
class PromotionRow:
    """In-memory view of a row from the ``Promotions`` sheet."""

    promotion_id: str
    name: str
    target_type: PromotionTarget
    target_value: str
    discount_kind: DiscountKind
    value: Decimal
    start_date: date
    end_date: date

    def is_active_on(self, day: date) -> bool:
        """Return ``True`` when ``day`` falls inside the inclusive window."""
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    customer_name: str


@dataclass(frozen=True)
class CashSessionRow:
    """In-memory view of a row from the ``CashSessions`` sheet."""

    session_id: str
    warehouse_id: str
    opening_balance: Decimal
    opened_at_iso: str
    closed_at_iso: Optional[str]
    status: CashSessionStatus

    @property
    def is_open(self) -> bool:
        return self.status is CashSessionStatus.OPEN


@dataclass(frozen=True)
class InvoiceLineRow:
    """Snapshot of one priced line as stored on the ``InvoiceLines`` sheet."""

    product_id: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    discount: Decimal
    promotion_name: Optional[str]
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class InvoiceRow:
    """Finalized sale as stored on the ``Invoices`` sheet plus its lines."""

    invoice_id: str
    customer_id: str
    customer_name: str
    issue_date: date
    due_date: date
    status: InvoiceStatus
    payment_method: PaymentMethod
    payment_date: Optional[date]
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    warehouse_id: str
    cash_session_id: Optional[str]
    lines: tuple[InvoiceLineRow, ...] = ()


@dataclass(frozen=True)
class CashClosingRow:
    """Till count for a closed session compared against system figures.

    Stored as one ``CashClosings`` header row plus one ``CashClosingLines``
    row per payment method. ``expected`` already includes the opening float
    in the cash bucket, and so does the counted cash. The ``total_*`` sales
    figures exclude it.
    """

    session_id: str
    opening_balance: Decimal
    expected: Mapping[PaymentMethod, Decimal]
    counted: Mapping[PaymentMethod, Decimal]
    differences: Mapping[PaymentMethod, Decimal]
    total_system_sales: Decimal
    total_counted_sales: Decimal
    total_difference: Decimal
    closed_at_iso: str

    @property
    def balanced(self) -> bool:
        return self.total_difference == Decimal("0")


# (method, expected, counted, difference); ``None`` marks a side that had no entry
ClosingLine = tuple[PaymentMethod, Optional[Decimal], Optional[Decimal], Decimal]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the terminal.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains
            ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Required options live under ``[System]``, ``[Terminal]`` and
    ``[Defaults]``. ``VatRate`` and ``SuggestionDebounce`` are optional and
    fall back to the package constants. Relative ``DataFile`` entries are
    anchored to ``base_path`` (or the current working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``VatRate`` or ``SuggestionDebounce`` are not numeric.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        warehouse_id = parser.get("Terminal", "WarehouseID")
        walk_in_customer = parser.get("Defaults", "WalkInCustomer")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    vat_raw = parser.get("Defaults", "VatRate", fallback=str(VAT_RATE))
    debounce = parser.getfloat("Defaults", "SuggestionDebounce", fallback=SUGGESTION_DEBOUNCE_SECONDS)
    try:
        vat_rate = Decimal(vat_raw)
    except ArithmeticError as exc:
        raise ValueError(f"Invalid VatRate in configuration: {vat_raw!r}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        warehouse_id=warehouse_id,
        walk_in_customer_id=walk_in_customer,
        vat_rate=vat_rate,
        suggestion_debounce=debounce,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the host workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_stock(workbook: Workbook) -> Dict[str, Dict[str, Decimal]]:
    """Fold the ``Stock`` sheet into ``{product_id: {warehouse_id: qty}}``.

    Repeated product/warehouse pairs are summed.
    """

    stock: Dict[str, Dict[str, Decimal]] = {}
    for product_id, warehouse_id, quantity in (row[:3] for row in _iter_sheet_rows(workbook, STOCK_SHEET)):
        per_warehouse = stock.setdefault(str(product_id), {})
        key = str(warehouse_id)
        per_warehouse[key] = per_warehouse.get(key, Decimal("0")) + _to_decimal(quantity)
    return stock


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over ``Products`` rows with their per-warehouse stock attached.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    stock = iter_stock(workbook)
    for raw in _iter_sheet_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw, stock=stock.get(str(raw[0]), {}))


def iter_promotions(workbook: Workbook) -> Iterable[PromotionRow]:
    """Iterate over ``Promotions`` rows in sheet order.

    Sheet order is significant: it is the evaluation order used when several
    promotions match the same product.
    """

    for raw in _iter_sheet_rows(workbook, PROMOTIONS_SHEET):
        yield deserialize_promotion(raw)


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    for raw in _iter_sheet_rows(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def iter_cash_sessions(workbook: Workbook) -> Iterable[CashSessionRow]:
    for raw in _iter_sheet_rows(workbook, CASH_SESSIONS_SHEET):
        yield deserialize_cash_session(raw)


def iter_invoices(workbook: Workbook) -> Iterable[InvoiceRow]:
    """Stream invoices from the ``Invoices`` sheet with their lines attached.

    Lines are grouped by ``InvoiceID`` from ``InvoiceLines`` and keep their
    sheet order, which is the order they had in the bill.
    """

    lines_by_invoice: Dict[str, List[InvoiceLineRow]] = {}
    for raw in _iter_sheet_rows(workbook, INVOICE_LINES_SHEET):
        lines_by_invoice.setdefault(str(raw[0]), []).append(deserialize_invoice_line(raw))

    for raw in _iter_sheet_rows(workbook, INVOICES_SHEET):
        invoice_id = str(raw[0])
        yield deserialize_invoice(raw, lines=lines_by_invoice.get(invoice_id, []))


def iter_cash_closings(workbook: Workbook) -> Iterable[CashClosingRow]:
    """Stream closing reports with their per-method lines, oldest first."""

    lines_by_session: Dict[str, List[ClosingLine]] = {}
    for raw in _iter_sheet_rows(workbook, CASH_CLOSING_LINES_SHEET):
        lines_by_session.setdefault(str(raw[0]), []).append(deserialize_cash_closing_line(raw))

    for raw in _iter_sheet_rows(workbook, CASH_CLOSINGS_SHEET):
        yield deserialize_cash_closing(raw, lines=lines_by_session.get(str(raw[0]), []))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product and one ``Stock`` row per warehouse it is held in."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))
    stock_sheet = workbook[STOCK_SHEET]
    for warehouse_id, quantity in record.stock_by_warehouse.items():
        stock_sheet.append([record.product_id, warehouse_id, quantity])


def append_promotion(workbook: Workbook, record: PromotionRow) -> None:
    workbook[PROMOTIONS_SHEET].append(serialize_promotion(record))


def append_customer(workbook: Workbook, record: CustomerRow) -> None:
    workbook[CUSTOMERS_SHEET].append(serialize_customer(record))


def append_cash_session(workbook: Workbook, record: CashSessionRow) -> None:
    workbook[CASH_SESSIONS_SHEET].append(serialize_cash_session(record))


def append_invoice(workbook: Workbook, record: InvoiceRow) -> None:
    """Append an invoice header and all of its line rows.

    Numerical fields remain :class:`~decimal.Decimal` instances after
    serialization so the workbook keeps their precision.
    """

    workbook[INVOICES_SHEET].append(serialize_invoice(record))
    lines_sheet = workbook[INVOICE_LINES_SHEET]
    for line in record.lines:
        lines_sheet.append(serialize_invoice_line(record.invoice_id, line))


def append_cash_closing(workbook: Workbook, record: CashClosingRow) -> None:
    """Append a closing header and one line per payment method it mentions."""

    workbook[CASH_CLOSINGS_SHEET].append(serialize_cash_closing(record))
    lines_sheet = workbook[CASH_CLOSING_LINES_SHEET]
    for method in record.differences:
        lines_sheet.append(serialize_cash_closing_line(record, method))


def update_cash_session(workbook: Workbook, session_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing cash session row.

    Raises:
        KeyError: If the session or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, CASH_SESSIONS_SHEET, "SessionID", session_id)
    if row_index is None:
        raise KeyError(f"Cash session not found: {session_id}")

    sheet = workbook[CASH_SESSIONS_SHEET]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}

    for column, value in field_values.items():
        if column not in header_map:
            raise KeyError(f"Unknown cash session field: {column}")
        sheet.cell(row=row_index, column=header_map[column], value=value)
    log.debug("Updated cash session '%s' fields: %s", session_id, ", ".join(field_values))


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] is not None and str(row[key_col_index - 1]) == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Return ``[ProductID, ProductName, UnitPrice, UnitCost, Category]``."""

    return [record.product_id, record.product_name, record.unit_price, record.unit_cost, record.category]


def serialize_promotion(record: PromotionRow) -> list[object]:
    return [
        record.promotion_id,
        record.name,
        record.target_type.value,
        record.target_value,
        record.discount_kind.value,
        record.value,
        record.start_date,
        record.end_date,
    ]


def serialize_customer(record: CustomerRow) -> list[object]:
    return [record.customer_id, record.customer_name]


def serialize_cash_session(record: CashSessionRow) -> list[object]:
    return [
        record.session_id,
        record.warehouse_id,
        record.opening_balance,
        record.opened_at_iso,
        record.closed_at_iso,
        record.status.value,
    ]


def serialize_invoice(record: InvoiceRow) -> list[object]:
    """Convert an invoice header into the ``Invoices`` column order."""

    return [
        record.invoice_id,
        record.customer_id,
        record.customer_name,
        record.issue_date,
        record.due_date,
        record.status.value,
        record.payment_method.value,
        record.payment_date,
        record.subtotal,
        record.discount,
        record.tax,
        record.total,
        record.warehouse_id,
        record.cash_session_id,
    ]


def serialize_invoice_line(invoice_id: str, line: InvoiceLineRow) -> list[object]:
    return [
        invoice_id,
        line.product_id,
        line.product_name,
        line.quantity,
        line.unit_price,
        line.subtotal,
        line.discount,
        line.promotion_name,
        line.tax,
        line.total,
    ]


def serialize_cash_closing(record: CashClosingRow) -> list[object]:
    """Convert a closing header into the ``CashClosings`` column order."""

    return [
        record.session_id,
        record.closed_at_iso,
        record.opening_balance,
        record.total_system_sales,
        record.total_counted_sales,
        record.total_difference,
    ]


def serialize_cash_closing_line(record: CashClosingRow, method: PaymentMethod) -> list[object]:
    return [
        record.session_id,
        method.value,
        record.expected.get(method),
        record.counted.get(method),
        record.differences[method],
    ]


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_date(raw: object) -> Optional[date]:
    """Normalize Excel cell values (datetime, date or ISO text) into dates."""

    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def _optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_product(raw_row: Sequence[object], *, stock: Optional[Mapping[str, Decimal]] = None) -> ProductRow:
    """Convert a raw ``Products`` row into a strongly typed product record.

    Identifiers and names are coerced to ``str`` so Excel's numeric
    auto-detection never leaks into lookups.
    """

    product_id, product_name, price_raw, cost_raw, category = raw_row[:5]
    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name),
        unit_price=_to_decimal(price_raw),
        unit_cost=_to_decimal(cost_raw),
        category=str(category) if category is not None else "",
        stock_by_warehouse=dict(stock or {}),
    )


def deserialize_promotion(raw_row: Sequence[object]) -> PromotionRow:
    (
        promotion_id,
        name,
        target_type,
        target_value,
        discount_kind,
        value_raw,
        start_raw,
        end_raw,
    ) = raw_row[:8]
    return PromotionRow(
        promotion_id=str(promotion_id),
        name=str(name),
        target_type=PromotionTarget(str(target_type)),
        target_value=str(target_value),
        discount_kind=DiscountKind(str(discount_kind)),
        value=_to_decimal(value_raw),
        start_date=_to_date(start_raw) or date.min,
        end_date=_to_date(end_raw) or date.max,
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    customer_id, customer_name = raw_row[:2]
    return CustomerRow(customer_id=str(customer_id), customer_name=str(customer_name))


def deserialize_cash_session(raw_row: Sequence[object]) -> CashSessionRow:
    session_id, warehouse_id, opening_raw, opened_at, closed_at, status = raw_row[:6]
    return CashSessionRow(
        session_id=str(session_id),
        warehouse_id=str(warehouse_id),
        opening_balance=_to_decimal(opening_raw),
        opened_at_iso=str(opened_at) if opened_at is not None else "",
        closed_at_iso=_optional_str(closed_at),
        status=CashSessionStatus(str(status)),
    )


def deserialize_invoice_line(raw_row: Sequence[object]) -> InvoiceLineRow:
    """Convert an ``InvoiceLines`` row (leading ``InvoiceID`` included)."""

    (
        _invoice_id,
        product_id,
        product_name,
        quantity,
        unit_price,
        subtotal,
        discount,
        promotion_name,
        tax,
        total,
    ) = raw_row[:10]
    return InvoiceLineRow(
        product_id=str(product_id),
        product_name=str(product_name),
        quantity=_to_decimal(quantity),
        unit_price=_to_decimal(unit_price),
        subtotal=_to_decimal(subtotal),
        discount=_to_decimal(discount),
        promotion_name=_optional_str(promotion_name),
        tax=_to_decimal(tax),
        total=_to_decimal(total),
    )


def deserialize_invoice(raw_row: Sequence[object], *, lines: Sequence[InvoiceLineRow] = ()) -> InvoiceRow:
    """Convert a raw ``Invoices`` row into a strongly typed invoice record.

    Monetary columns become :class:`~decimal.Decimal`, date columns become
    :class:`~datetime.date`, and the status/method text is mapped back onto
    the closed enums so unknown values fail loudly.
    """

    (
        invoice_id,
        customer_id,
        customer_name,
        issue_raw,
        due_raw,
        status,
        payment_method,
        payment_raw,
        subtotal,
        discount,
        tax,
        total,
        warehouse_id,
        cash_session_id,
    ) = raw_row[:14]

    issue_date = _to_date(issue_raw)
    if issue_date is None:
        raise ValueError(f"Invoice '{invoice_id}' has no issue date")

    return InvoiceRow(
        invoice_id=str(invoice_id),
        customer_id=str(customer_id),
        customer_name=str(customer_name) if customer_name is not None else "",
        issue_date=issue_date,
        due_date=_to_date(due_raw) or issue_date,
        status=InvoiceStatus(str(status)),
        payment_method=PaymentMethod(str(payment_method)),
        payment_date=_to_date(payment_raw),
        subtotal=_to_decimal(subtotal),
        discount=_to_decimal(discount),
        tax=_to_decimal(tax),
        total=_to_decimal(total),
        warehouse_id=str(warehouse_id) if warehouse_id is not None else "",
        cash_session_id=_optional_str(cash_session_id),
        lines=tuple(lines),
    )


def deserialize_cash_closing_line(raw_row: Sequence[object]) -> ClosingLine:
    """Convert a ``CashClosingLines`` row (leading ``SessionID`` included)."""

    _session_id, method, expected, counted, difference = raw_row[:5]
    return (
        PaymentMethod(str(method)),
        _to_decimal(expected) if expected is not None else None,
        _to_decimal(counted) if counted is not None else None,
        _to_decimal(difference),
    )


def deserialize_cash_closing(raw_row: Sequence[object], *, lines: Sequence[ClosingLine] = ()) -> CashClosingRow:
    """Rebuild a closing report from its header row and per-method lines.

    A method only appears in ``expected`` or ``counted`` when its cell on the
    line was filled in, so the maps read back exactly as they were written.
    """

    session_id, closed_at, opening_raw, system_raw, counted_raw, difference_raw = raw_row[:6]
    expected: Dict[PaymentMethod, Decimal] = {}
    counted: Dict[PaymentMethod, Decimal] = {}
    differences: Dict[PaymentMethod, Decimal] = {}
    for method, expected_amount, counted_amount, difference in lines:
        if expected_amount is not None:
            expected[method] = expected_amount
        if counted_amount is not None:
            counted[method] = counted_amount
        differences[method] = difference

    return CashClosingRow(
        session_id=str(session_id),
        opening_balance=_to_decimal(opening_raw),
        expected=expected,
        counted=counted,
        differences=differences,
        total_system_sales=_to_decimal(system_raw),
        total_counted_sales=_to_decimal(counted_raw),
        total_difference=_to_decimal(difference_raw),
        closed_at_iso=str(closed_at) if closed_at is not None else "",
    )
