"""Enumerations and fixed rates shared across the POS engine.

Centralises the closed vocabularies of the terminal (payment methods,
invoice states, promotion kinds, workbook sheets) so that pricing, checkout,
the data access layer and the CLI agree on a single source of truth.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Single fixed VAT rate (IVA) applied to every taxable base.
VAT_RATE = Decimal("0.19")

WALK_IN_CUSTOMER_ID = "1"
WALK_IN_CUSTOMER_NAME = "Consumidor Final"

BILL_NAME_PREFIX = "Cuenta"

# Standard COP bills offered as quick tendered amounts, ascending.
CASH_DENOMINATIONS: tuple[Decimal, ...] = (
    Decimal("5000"),
    Decimal("10000"),
    Decimal("20000"),
    Decimal("50000"),
    Decimal("100000"),
    Decimal("200000"),
)

SUGGESTION_DEBOUNCE_SECONDS = 1.5


class SettlementClass(str, Enum):
    """Whether a payment method settles the invoice at the register."""

    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


class PaymentMethod(str, Enum):
    """Closed set of payment methods accepted by the terminal.

    Each member carries its settlement class as data so the checkout path
    never consults a separate lookup table.
    """

    CASH = ("Efectivo", SettlementClass.IMMEDIATE)
    CARD = ("Tarjeta de Crédito/Débito", SettlementClass.IMMEDIATE)
    NEQUI = ("Nequi", SettlementClass.IMMEDIATE)
    DAVIPLATA = ("Daviplata", SettlementClass.IMMEDIATE)
    PSE = ("PSE", SettlementClass.IMMEDIATE)
    CASH_ON_DELIVERY = ("Contra Entrega", SettlementClass.DEFERRED)
    PAY_POINT = ("Punto de Pago", SettlementClass.DEFERRED)

    def __new__(cls, label: str, settlement: SettlementClass) -> "PaymentMethod":
        member = str.__new__(cls, label)
        member._value_ = label
        member.settlement = settlement
        return member

    @property
    def settles_immediately(self) -> bool:
        return self.settlement is SettlementClass.IMMEDIATE


class InvoiceStatus(str, Enum):
    """Lifecycle states an invoice may be created with."""

    PAID = "pagada"
    PENDING = "pendiente"


class CashSessionStatus(str, Enum):
    """Open/closed state of a till drawer."""

    OPEN = "open"
    CLOSED = "closed"


class PromotionTarget(str, Enum):
    """What a promotion matches against."""

    PRODUCT = "product"
    CATEGORY = "category"


class DiscountKind(str, Enum):
    """How a promotion's value turns into a discount amount."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    STOCK = "Stock"
    PROMOTIONS = "Promotions"
    CUSTOMERS = "Customers"
    CASH_SESSIONS = "CashSessions"
    INVOICES = "Invoices"
    INVOICE_LINES = "InvoiceLines"
    CASH_CLOSINGS = "CashClosings"
    CASH_CLOSING_LINES = "CashClosingLines"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "VAT_RATE",
    "WALK_IN_CUSTOMER_ID",
    "WALK_IN_CUSTOMER_NAME",
    "BILL_NAME_PREFIX",
    "CASH_DENOMINATIONS",
    "SUGGESTION_DEBOUNCE_SECONDS",
    "SettlementClass",
    "PaymentMethod",
    "InvoiceStatus",
    "CashSessionStatus",
    "PromotionTarget",
    "DiscountKind",
    "SheetName",
]
