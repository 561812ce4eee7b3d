"""Checkout orchestration: turn a priced bill into an immutable invoice.

The only externally observable side effect of a successful checkout is the
single call to the host's invoice sink. Every rejection happens before that
call and before the bill slot is recycled, so a rejected checkout leaves the
bill, the session and the invoice collection exactly as they were.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Mapping, Optional

from . import log
from .cash_session import can_sell
from .constants import WALK_IN_CUSTOMER_NAME, InvoiceStatus, PaymentMethod
from .data_manager import CashSessionRow, CustomerRow, InvoiceLineRow, InvoiceRow
from .payments import Reconciliation, ReconcileError, reconcile
from .pricing import LineItem, Number
from .tabs import Bill, TerminalSession


InvoiceSink = Callable[[InvoiceRow], None]


class CheckoutError(str, Enum):
    """Reasons a checkout is rejected. None of them are raised."""

    EMPTY_BILL = "EMPTY_BILL"
    SESSION_CLOSED = "SESSION_CLOSED"
    AMOUNT_NOT_RECEIVED = "AMOUNT_NOT_RECEIVED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


_RECONCILE_TO_CHECKOUT = {
    ReconcileError.AMOUNT_NOT_RECEIVED: CheckoutError.AMOUNT_NOT_RECEIVED,
    ReconcileError.INSUFFICIENT_FUNDS: CheckoutError.INSUFFICIENT_FUNDS,
}


@dataclass(frozen=True)
class CheckoutResult:
    """Either the emitted invoice or the reason nothing was emitted."""

    invoice: Optional[InvoiceRow] = None
    error: Optional[CheckoutError] = None
    reconciliation: Optional[Reconciliation] = None

    @property
    def ok(self) -> bool:
        return self.invoice is not None

    @property
    def change(self) -> Optional[Decimal]:
        return self.reconciliation.change if self.reconciliation is not None else None


def generate_invoice_id(*, prefix: str = "INV-POS-", when: Optional[datetime] = None) -> str:
    """Generate a sortable invoice identifier from a UTC timestamp.

    The microsecond component keeps two checkouts in the same second apart.
    """
    when = when if when is not None else datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def snapshot_line(item: LineItem) -> InvoiceLineRow:
    return InvoiceLineRow(
        product_id=item.product_id,
        product_name=item.product_name,
        quantity=item.quantity,
        unit_price=item.unit_price,
        subtotal=item.subtotal,
        discount=item.discount,
        promotion_name=item.promotion_name,
        tax=item.tax,
        total=item.total,
    )


def build_invoice(
    bill: Bill,
    reconciliation: Reconciliation,
    *,
    session: CashSessionRow,
    customer_name: str,
    warehouse_id: str,
    when: datetime,
) -> InvoiceRow:
    """Snapshot ``bill`` into an :class:`InvoiceRow`.

    Totals and lines are copied from the bill as priced right now. The issue
    and due dates are the day of ``when``; the payment date is only set when
    the payment method settles immediately.
    """
    totals = bill.totals
    today = when.date()
    paid = reconciliation.status is InvoiceStatus.PAID
    return InvoiceRow(
        invoice_id=generate_invoice_id(when=when),
        customer_id=bill.customer_id,
        customer_name=customer_name,
        issue_date=today,
        due_date=today,
        status=reconciliation.status,
        payment_method=reconciliation.method,
        payment_date=today if paid else None,
        subtotal=totals.subtotal,
        discount=totals.discount,
        tax=totals.tax,
        total=totals.total,
        warehouse_id=warehouse_id,
        cash_session_id=session.session_id,
        lines=tuple(snapshot_line(item) for item in bill.items),
    )


def checkout(
    bill: Bill,
    cash_session: Optional[CashSessionRow],
    payment_method: PaymentMethod,
    amount_received: Optional[Number] = None,
    *,
    emit: InvoiceSink,
    customers: Optional[Mapping[str, CustomerRow]] = None,
    warehouse_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> CheckoutResult:
    """Finalize ``bill`` into an invoice and hand it to ``emit``.

    Steps, in order: reject an empty bill; reject when no cash session is
    open; reconcile the payment and reject a missing or short cash amount;
    snapshot the bill into an invoice; emit it.

    Args:
        bill (Bill): Priced bill to finalize.
        cash_session (CashSessionRow | None): Session the sale is bound to.
        payment_method (PaymentMethod): Method chosen by the operator.
        amount_received (Number | None): Cash tendered, for cash payments.
        emit (InvoiceSink): Host callback appending to the invoice collection.
        customers (Mapping[str, CustomerRow] | None): Used to denormalize the
            customer name; unknown customers fall back to the walk-in name.
        warehouse_id (str | None): Overrides the session's warehouse.
        when (datetime | None): Checkout moment, defaults to now (UTC).

    Returns:
        CheckoutResult: The invoice on success, otherwise the rejection code.
    """
    if bill.is_empty:
        log.warning("Checkout rejected for '%s': bill is empty", bill.name)
        return CheckoutResult(error=CheckoutError.EMPTY_BILL)

    if cash_session is None or not can_sell(cash_session):
        log.warning("Checkout rejected for '%s': no open cash session", bill.name)
        return CheckoutResult(error=CheckoutError.SESSION_CLOSED)

    reconciliation = reconcile(bill.total, payment_method, amount_received)
    if reconciliation.error is not None:
        log.warning("Checkout rejected for '%s': %s", bill.name, reconciliation.error.value)
        return CheckoutResult(error=_RECONCILE_TO_CHECKOUT[reconciliation.error], reconciliation=reconciliation)

    customer = (customers or {}).get(bill.customer_id)
    invoice = build_invoice(
        bill,
        reconciliation,
        session=cash_session,
        customer_name=customer.customer_name if customer is not None else WALK_IN_CUSTOMER_NAME,
        warehouse_id=warehouse_id or cash_session.warehouse_id,
        when=when if when is not None else datetime.now(UTC),
    )
    emit(invoice)
    log.info(
        "Recorded invoice '%s' from '%s' (total=%s, method=%s, status=%s, change=%s)",
        invoice.invoice_id,
        bill.name,
        invoice.total,
        invoice.payment_method.value,
        invoice.status.value,
        reconciliation.change,
    )
    return CheckoutResult(invoice=invoice, reconciliation=reconciliation)


def checkout_active_bill(
    terminal: TerminalSession,
    cash_session: Optional[CashSessionRow],
    payment_method: PaymentMethod,
    amount_received: Optional[Number] = None,
    *,
    emit: InvoiceSink,
    customers: Optional[Mapping[str, CustomerRow]] = None,
    warehouse_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> CheckoutResult:
    """Check out the terminal's active bill and recycle its tab on success."""
    bill = terminal.active_bill
    result = checkout(
        bill,
        cash_session,
        payment_method,
        amount_received,
        emit=emit,
        customers=customers,
        warehouse_id=warehouse_id,
        when=when,
    )
    if result.ok:
        terminal.recycle_bill(bill.bill_id)
    return result
