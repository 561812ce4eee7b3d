"""Payment reconciliation for the checkout step.

Reconciliation never raises for operator mistakes: a short cash payment or
a missing tendered amount comes back as a :class:`Reconciliation` carrying
an error code, which keeps the confirm action disabled until the operator
fixes the input.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from enum import Enum
from typing import List, Optional

from . import log
from .constants import CASH_DENOMINATIONS, InvoiceStatus, PaymentMethod
from .pricing import Number, to_decimal


THOUSAND = Decimal("1000")
TEN_THOUSAND = Decimal("10000")
MAX_QUICK_CASH_OPTIONS = 4


class ReconcileError(str, Enum):
    """Reasons a payment cannot be confirmed yet."""

    AMOUNT_NOT_RECEIVED = "AMOUNT_NOT_RECEIVED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of matching a payment against a bill total.

    ``change`` is only set for cash payments with a tendered amount; it may
    be negative, in which case ``error`` is ``INSUFFICIENT_FUNDS``.
    """

    method: PaymentMethod
    status: InvoiceStatus
    change: Optional[Decimal] = None
    error: Optional[ReconcileError] = None

    @property
    def can_confirm(self) -> bool:
        return self.error is None

    @property
    def shortfall(self) -> Decimal:
        """Amount still owed on a short cash payment, otherwise zero."""
        if self.change is not None and self.change < 0:
            return -self.change
        return Decimal("0")


def status_for(method: PaymentMethod) -> InvoiceStatus:
    """Map a payment method's settlement class onto the invoice status."""
    return InvoiceStatus.PAID if method.settles_immediately else InvoiceStatus.PENDING


def reconcile(total: Decimal, method: PaymentMethod, amount_received: Optional[Number] = None) -> Reconciliation:
    """Reconcile a bill total with the chosen payment method.

    Args:
        total (Decimal): Bill total to settle.
        method (PaymentMethod): Payment method picked by the operator.
        amount_received (Number | None): Cash tendered. Only consulted for
            :attr:`PaymentMethod.CASH`; ignored for every other method.

    Returns:
        Reconciliation: Status derived from the method's settlement class,
            the change owed for cash, and an error code when the payment
            cannot be confirmed.
    """
    status = status_for(method)
    if method is not PaymentMethod.CASH:
        return Reconciliation(method=method, status=status)

    if amount_received is None:
        return Reconciliation(method=method, status=status, error=ReconcileError.AMOUNT_NOT_RECEIVED)

    change = to_decimal(amount_received) - total
    if change < 0:
        log.warning("Cash payment short by %s (total=%s, received=%s)", -change, total, amount_received)
        return Reconciliation(method=method, status=status, change=change, error=ReconcileError.INSUFFICIENT_FUNDS)
    return Reconciliation(method=method, status=status, change=change)


def _ceil_to(amount: Decimal, step: Decimal) -> Decimal:
    return (amount / step).to_integral_value(rounding=ROUND_CEILING) * step


def quick_cash_options(total: Decimal) -> List[Decimal]:
    """Suggest tendered amounts for the cash keypad.

    Candidates are the exact total, the smallest standard bill that covers
    it, and the next round thousand and ten-thousand above it (only for
    totals over 1,000 and 10,000 respectively). The result is deduplicated,
    ascending and holds at most four entries. Purely a UX aid.
    """
    options = {total}

    denomination = next((d for d in CASH_DENOMINATIONS if d >= total), None)
    if denomination is not None:
        options.add(denomination)

    if total > THOUSAND:
        next_thousand = _ceil_to(total, THOUSAND)
        if next_thousand != total:
            options.add(next_thousand)
    if total > TEN_THOUSAND:
        next_ten_thousand = _ceil_to(total, TEN_THOUSAND)
        if next_ten_thousand != total:
            options.add(next_ten_thousand)

    return sorted(options)[:MAX_QUICK_CASH_OPTIONS]
