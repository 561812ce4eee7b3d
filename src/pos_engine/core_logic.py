"""Business logic layer for the POS engine.

This module binds the pure pricing, tab, payment and checkout rules to the
host workbook. It consumes the Data Access Layer (DAL) for all I/O, keeps
memoized views of the read-mostly sheets and makes sure every write passes
through the cash session gate and the schema guard first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from openpyxl.workbook import Workbook

from . import catalog, data_manager, log
from .cash_session import (
    close_cash_session,
    find_open_session,
    open_cash_session,
    session_sales_total,
)
from .checkout import CheckoutResult, checkout_active_bill
from .constants import EXPECTED_SCHEMA_VERSION, PaymentMethod
from .errors import (
    BusinessRuleViolation,
    ConfirmationRequired,
    MissingReferenceError,
    SessionStateError,
)
from .pricing import Number, active_promotions, current_day, to_decimal
from .suggestions import SuggestionFetcher, SuggestionListener, UpsellAdvisor
from .tabs import TerminalSession


__all__ = [
    "BusinessRuleViolation",
    "ConfirmationRequired",
    "MissingReferenceError",
    "SessionStateError",
    "RuntimeContext",
    "load_runtime_context",
    "ensure_schema_version",
    "list_products",
    "list_sellable_products",
    "list_categories",
    "browse_catalog",
    "list_promotions",
    "list_customers",
    "list_invoices",
    "list_cash_sessions",
    "list_cash_closings",
    "get_product",
    "get_customer",
    "get_invoice",
    "active_cash_session",
    "open_session",
    "close_session",
    "session_total",
    "record_invoice",
    "start_terminal",
    "start_advisor",
    "checkout_bill",
    "require_positive_quantity",
    "require_nonnegative_money",
    "persist_context",
    "refresh_context",
]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business layer keeps in-memory caches keyed by domain area
    (products, promotions, customers, invoices, cash sessions, closings).
    Buckets are plain dictionaries holding precomputed query results so the
    workbook is not re-scanned for every lookup.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored so callers can request targeted invalidation
    without checking what has been populated.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_keyed_cache(
    context: RuntimeContext,
    name: str,
    loader: Callable[[Workbook], Any],
    key: Callable[[Any], str],
) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = list(loader(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {key(row): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_keyed_cache(context, "products", data_manager.iter_products, lambda row: row.product_id)


def _ensure_promotions_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_keyed_cache(context, "promotions", data_manager.iter_promotions, lambda row: row.promotion_id)


def _ensure_customers_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_keyed_cache(context, "customers", data_manager.iter_customers, lambda row: row.customer_id)


def _ensure_invoices_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_keyed_cache(context, "invoices", data_manager.iter_invoices, lambda row: row.invoice_id)


def _ensure_cash_sessions_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_keyed_cache(context, "cash_sessions", data_manager.iter_cash_sessions, lambda row: row.session_id)


def _ensure_cash_closings_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_keyed_cache(context, "cash_closings", data_manager.iter_cash_closings, lambda row: row.session_id)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Resolves ``config.ini``, parses the settings and opens the Excel workbook
    holding the catalog and the invoice collection. The resulting
    :class:`RuntimeContext` bundles the immutable settings with a mutable
    workbook handle and an empty cache store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return the cached catalog in sheet order, stock levels included."""
    return list(_ensure_products_cache(context)["all"])


def list_sellable_products(
    context: RuntimeContext,
    warehouse_id: Optional[str] = None,
) -> List[data_manager.ProductRow]:
    """Return products with stock on hand in the terminal's warehouse.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        warehouse_id (str | None): Warehouse to check; defaults to the one
            configured for this terminal.
    """
    warehouse = warehouse_id or context.settings.warehouse_id
    return catalog.sellable_products(list_products(context), warehouse)


def list_categories(context: RuntimeContext) -> List[str]:
    """Category filter options for the sellable catalog, ``"all"`` first."""
    return catalog.list_categories(list_sellable_products(context))


def browse_catalog(
    context: RuntimeContext,
    term: str = "",
    category: str = catalog.ALL_CATEGORIES,
) -> List[data_manager.ProductRow]:
    """Search the sellable catalog by name or id within ``category``."""
    return catalog.search_products(list_sellable_products(context), term, category)


def list_promotions(context: RuntimeContext, *, active_on: Optional[date] = None) -> List[data_manager.PromotionRow]:
    """Return promotions in sheet order, optionally only those active on a day.

    Sheet order matters: when several promotions match a product the first
    one wins.
    """
    promotions = list(_ensure_promotions_cache(context)["all"])
    if active_on is None:
        return promotions
    return active_promotions(promotions, active_on)


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return list(_ensure_customers_cache(context)["all"])


def list_invoices(context: RuntimeContext) -> List[data_manager.InvoiceRow]:
    """Snapshot of the invoice collection in workbook order."""
    return list(_ensure_invoices_cache(context)["all"])


def list_cash_sessions(context: RuntimeContext) -> List[data_manager.CashSessionRow]:
    return list(_ensure_cash_sessions_cache(context)["all"])


def list_cash_closings(context: RuntimeContext) -> List[data_manager.CashClosingRow]:
    """Closing history of every session, in the order the tills were closed."""
    return list(_ensure_cash_closings_cache(context)["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_customer(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    """Resolve a customer record by its identifier.

    Raises:
        MissingReferenceError: If ``customer_id`` cannot be located.
    """
    cache = _ensure_customers_cache(context)
    try:
        return cache["by_id"][customer_id]
    except KeyError as exc:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}") from exc


def get_invoice(context: RuntimeContext, invoice_id: str) -> data_manager.InvoiceRow:
    cache = _ensure_invoices_cache(context)
    try:
        return cache["by_id"][invoice_id]
    except KeyError as exc:
        log.warning("Invoice lookup failed for id '%s'", invoice_id)
        raise MissingReferenceError(f"Unknown invoice id: {invoice_id}") from exc


def active_cash_session(context: RuntimeContext) -> Optional[data_manager.CashSessionRow]:
    """Return the open session for the terminal's warehouse, if any."""
    return find_open_session(list_cash_sessions(context), context.settings.warehouse_id)


def _require_active_session(context: RuntimeContext) -> data_manager.CashSessionRow:
    session = active_cash_session(context)
    if session is None:
        log.warning("No open cash session for warehouse '%s'", context.settings.warehouse_id)
        raise SessionStateError(f"No open cash session for {context.settings.warehouse_id}")
    return session


def open_session(
    context: RuntimeContext,
    opening_balance: Number,
    *,
    when: Optional[datetime] = None,
) -> data_manager.CashSessionRow:
    """Open a cash session for the terminal and append it to the workbook.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        opening_balance (Number): Cash float placed in the drawer.
        when (datetime | None): Opening moment, defaults to now (UTC).

    Returns:
        data_manager.CashSessionRow: The newly opened session.

    Raises:
        RuntimeError: On a schema version mismatch.
        SessionStateError: If the warehouse already has an open session.
        ValueError: If ``opening_balance`` is negative.
    """
    ensure_schema_version(context)
    balance = to_decimal(opening_balance)
    require_nonnegative_money(balance)
    session = open_cash_session(
        balance,
        context.settings.warehouse_id,
        existing_sessions=list_cash_sessions(context),
        when=when,
    )
    data_manager.append_cash_session(context.workbook, session)
    _invalidate_cache(context, "cash_sessions")
    return session


def close_session(
    context: RuntimeContext,
    counted: Mapping[PaymentMethod, Number],
    *,
    when: Optional[datetime] = None,
) -> data_manager.CashClosingRow:
    """Close the terminal's open session, reconcile the till and keep the report.

    The session row is marked closed and the closing report is appended to
    the closing history read back by :func:`list_cash_closings`.

    Raises:
        RuntimeError: On a schema version mismatch.
        SessionStateError: If there is no open session to close.
    """
    ensure_schema_version(context)
    session = _require_active_session(context)
    closed, closing = close_cash_session(session, list_invoices(context), counted, when=when)
    data_manager.update_cash_session(
        context.workbook,
        session.session_id,
        field_values={"ClosedAt": closed.closed_at_iso, "Status": closed.status.value},
    )
    data_manager.append_cash_closing(context.workbook, closing)
    _invalidate_cache(context, "cash_sessions", "cash_closings")
    return closing


def session_total(context: RuntimeContext) -> Decimal:
    """Sales total of the open session, recomputed from the invoices.

    Raises:
        SessionStateError: If there is no open session.
    """
    session = _require_active_session(context)
    return session_sales_total(session.session_id, list_invoices(context))


def record_invoice(context: RuntimeContext, invoice: data_manager.InvoiceRow) -> data_manager.InvoiceRow:
    """Append ``invoice`` and its lines to the workbook.

    This is the invoice sink handed to the checkout orchestrator. Invoices are
    append-only; a repeated identifier is refused.

    Raises:
        BusinessRuleViolation: If an invoice with the same id already exists.
    """
    if invoice.invoice_id in _ensure_invoices_cache(context)["by_id"]:
        log.warning("Duplicate invoice id '%s' refused", invoice.invoice_id)
        raise BusinessRuleViolation(f"Invoice '{invoice.invoice_id}' already exists")

    data_manager.append_invoice(context.workbook, invoice)
    _invalidate_cache(context, "invoices")
    log.debug("Appended invoice '%s' with %d lines", invoice.invoice_id, len(invoice.lines))
    return invoice


def start_terminal(context: RuntimeContext, *, clock: Callable[[], date] = current_day) -> TerminalSession:
    """Build the tab manager for this terminal from the cached catalog."""
    terminal = TerminalSession(
        list_products(context),
        list_promotions(context),
        walk_in_customer_id=context.settings.walk_in_customer_id,
        vat_rate=context.settings.vat_rate,
        clock=clock,
    )
    return terminal


def start_advisor(
    context: RuntimeContext,
    fetch: SuggestionFetcher,
    on_suggestion: SuggestionListener,
) -> UpsellAdvisor:
    """Build the upsell advisor for this terminal.

    The advisor offers only products sellable from the terminal's warehouse
    and waits ``[Defaults] SuggestionDebounce`` seconds after the last cart
    change before querying ``fetch``.
    """
    return UpsellAdvisor(
        fetch,
        on_suggestion,
        products=list_sellable_products(context),
        debounce=context.settings.suggestion_debounce,
    )


def checkout_bill(
    context: RuntimeContext,
    terminal: TerminalSession,
    payment_method: PaymentMethod,
    amount_received: Optional[Number] = None,
    *,
    when: Optional[datetime] = None,
) -> CheckoutResult:
    """Check out the terminal's active bill against the open session.

    The invoice is written through :func:`record_invoice`; rejections leave
    the workbook untouched.

    Raises:
        RuntimeError: On a schema version mismatch.
    """
    ensure_schema_version(context)
    return checkout_active_bill(
        terminal,
        active_cash_session(context),
        payment_method,
        amount_received,
        emit=lambda invoice: record_invoice(context, invoice),
        customers=_ensure_customers_cache(context)["by_id"],
        warehouse_id=context.settings.warehouse_id,
        when=when,
    )


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to disk.

    In-memory caches remain valid because the workbook handle is unchanged
    after the save completes.
    """
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
