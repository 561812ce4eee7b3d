"""Cash-drawer session gate and till reconciliation.

No invoice may be finalized unless the terminal has an open cash session.
The sales figures of a session are never stored as running counters; they
are always recomputed from the authoritative invoice collection.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional

from . import log
from .constants import CashSessionStatus, InvoiceStatus, PaymentMethod
from .data_manager import CashClosingRow, CashSessionRow, InvoiceRow
from .errors import SessionStateError
from .pricing import Number, to_decimal


ZERO = Decimal("0")


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def generate_session_id(*, when: Optional[datetime] = None) -> str:
    """Generate a sortable session identifier ``CS{YYYYMMDDHHMMSSffffff}``."""
    when = _resolve_timestamp(when)
    return f"CS{when.strftime('%Y%m%d%H%M%S%f')}"


def can_sell(session: Optional[CashSessionRow]) -> bool:
    """Return ``True`` only when ``session`` exists and is open."""
    return session is not None and session.is_open


def find_open_session(sessions: Iterable[CashSessionRow], warehouse_id: str) -> Optional[CashSessionRow]:
    """Return the open session for ``warehouse_id``, if any (last one wins)."""
    found: Optional[CashSessionRow] = None
    for session in sessions:
        if session.warehouse_id == warehouse_id and session.is_open:
            found = session
    return found


def session_invoices(session_id: str, invoices: Iterable[InvoiceRow]) -> list[InvoiceRow]:
    """Paid invoices bound to ``session_id``, in collection order."""
    return [
        invoice
        for invoice in invoices
        if invoice.cash_session_id == session_id and invoice.status is InvoiceStatus.PAID
    ]


def session_sales_total(session_id: str, invoices: Iterable[InvoiceRow]) -> Decimal:
    """Sum the totals of paid invoices recorded against ``session_id``."""
    return sum((invoice.total for invoice in session_invoices(session_id, invoices)), ZERO)


def sales_by_method(session_id: str, invoices: Iterable[InvoiceRow]) -> Dict[PaymentMethod, Decimal]:
    """Break a session's paid sales down per payment method."""
    totals: Dict[PaymentMethod, Decimal] = {}
    for invoice in session_invoices(session_id, invoices):
        totals[invoice.payment_method] = totals.get(invoice.payment_method, ZERO) + invoice.total
    return totals


def open_cash_session(
    opening_balance: Number,
    warehouse_id: str,
    *,
    existing_sessions: Iterable[CashSessionRow] = (),
    when: Optional[datetime] = None,
) -> CashSessionRow:
    """Open a till for ``warehouse_id`` with ``opening_balance`` as float.

    Raises:
        SessionStateError: If the warehouse already has an open session.
        ValueError: If ``opening_balance`` is negative.
    """
    balance = to_decimal(opening_balance)
    if balance < ZERO:
        log.error("Opening balance validation failed: %s", balance)
        raise ValueError("Opening balance must be zero or positive")

    current = find_open_session(existing_sessions, warehouse_id)
    if current is not None:
        log.warning("Warehouse '%s' already has open session '%s'", warehouse_id, current.session_id)
        raise SessionStateError(f"Cash session '{current.session_id}' is already open for {warehouse_id}")

    when = _resolve_timestamp(when)
    session = CashSessionRow(
        session_id=generate_session_id(when=when),
        warehouse_id=warehouse_id,
        opening_balance=balance,
        opened_at_iso=when.isoformat(),
        closed_at_iso=None,
        status=CashSessionStatus.OPEN,
    )
    log.info("Opened cash session '%s' for '%s' with float %s", session.session_id, warehouse_id, balance)
    return session


def close_cash_session(
    session: CashSessionRow,
    invoices: Iterable[InvoiceRow],
    counted: Mapping[PaymentMethod, Number],
    *,
    when: Optional[datetime] = None,
) -> tuple[CashSessionRow, CashClosingRow]:
    """Close ``session`` and compare the till count against system sales.

    Args:
        session (CashSessionRow): Session to close; must be open.
        invoices (Iterable[InvoiceRow]): Authoritative invoice collection.
        counted (Mapping[PaymentMethod, Number]): Amounts counted per method.
            Counted cash includes the opening float. Methods left out count
            as zero.
        when (datetime | None): Closing moment, defaults to now (UTC).

    Returns:
        tuple[CashSessionRow, CashClosingRow]: The closed session record and the
            reconciliation report.

    Raises:
        SessionStateError: If the session is already closed.
    """
    if not session.is_open:
        log.warning("Attempted to close already closed session '%s'", session.session_id)
        raise SessionStateError(f"Cash session '{session.session_id}' is already closed")

    expected = sales_by_method(session.session_id, invoices)
    expected[PaymentMethod.CASH] = expected.get(PaymentMethod.CASH, ZERO) + session.opening_balance
    counted_amounts = {method: to_decimal(amount) for method, amount in counted.items()}

    differences = {
        method: counted_amounts.get(method, ZERO) - expected.get(method, ZERO)
        for method in PaymentMethod
        if method in expected or method in counted_amounts
    }
    total_system = sum(expected.values(), ZERO) - session.opening_balance
    total_counted = sum(counted_amounts.values(), ZERO) - session.opening_balance

    when = _resolve_timestamp(when)
    closed = replace(session, closed_at_iso=when.isoformat(), status=CashSessionStatus.CLOSED)
    closing = CashClosingRow(
        session_id=session.session_id,
        opening_balance=session.opening_balance,
        expected=expected,
        counted=counted_amounts,
        differences=differences,
        total_system_sales=total_system,
        total_counted_sales=total_counted,
        total_difference=total_counted - total_system,
        closed_at_iso=closed.closed_at_iso or "",
    )
    log.info(
        "Closed cash session '%s': system=%s counted=%s difference=%s",
        session.session_id,
        total_system,
        total_counted,
        closing.total_difference,
    )
    return closed, closing
