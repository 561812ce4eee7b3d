"""Promotion resolution and line pricing for the POS engine.

Every function in this module is pure: given the same line, product,
promotion list and day it returns the same values, so callers can re-price
a whole bill after each keystroke without worrying about drift. Amounts are
:class:`~decimal.Decimal` throughout and are never rounded here; locale
formatting is the renderer's concern.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence, Union

from . import log
from .constants import VAT_RATE, DiscountKind, PromotionTarget
from .data_manager import ProductRow, PromotionRow


ZERO = Decimal("0")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, str]


@dataclass(frozen=True)
class LineItem:
    """One product line of a bill.

    ``product_name`` and ``unit_price`` are captured when the line is created
    so later catalog edits never change a pending sale. The remaining fields
    are derived and only ever produced by :func:`price_line`.
    """

    product_id: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    promotion_name: Optional[str] = None
    tax: Decimal = ZERO
    total: Decimal = ZERO

    @property
    def taxable_base(self) -> Decimal:
        return self.subtotal - self.discount


@dataclass(frozen=True)
class PromotionMatch:
    """Resolver output: the discount for a line and the promotion's name."""

    discount: Decimal
    promotion_name: Optional[str]


NO_PROMOTION = PromotionMatch(discount=ZERO, promotion_name=None)


@dataclass(frozen=True)
class BillTotals:
    """Aggregate amounts of a bill, summed from its priced lines.

    ``line_count`` counts distinct lines; ``unit_count`` sums their quantities.
    """

    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    line_count: int
    unit_count: Decimal

    @property
    def taxable_base(self) -> Decimal:
        return self.subtotal - self.discount


def to_decimal(value: Number) -> Decimal:
    """Coerce user-facing numeric input into a :class:`Decimal`.

    Floats are rejected because their binary expansion would leak into the
    money arithmetic.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Unsupported numeric value for money arithmetic: {value!r}")
    return Decimal(str(value))


def current_day() -> date:
    """Return today's date in UTC, the calendar promotions are keyed on."""
    return datetime.now(UTC).date()


def new_line_item(product: ProductRow, quantity: Number = 1) -> LineItem:
    """Capture a product into an unpriced line item."""
    return LineItem(
        product_id=product.product_id,
        product_name=product.product_name,
        quantity=to_decimal(quantity),
        unit_price=product.unit_price,
    )


def active_promotions(promotions: Iterable[PromotionRow], today: date) -> List[PromotionRow]:
    """Keep promotions whose inclusive window contains ``today``, in order."""
    return [promotion for promotion in promotions if promotion.is_active_on(today)]


def promotion_applies(promotion: PromotionRow, product: ProductRow) -> bool:
    if promotion.target_type is PromotionTarget.PRODUCT:
        return promotion.target_value == product.product_id
    if promotion.target_type is PromotionTarget.CATEGORY:
        return promotion.target_value == product.category
    return False


def find_applicable_promotion(
    product: Optional[ProductRow],
    promotions: Sequence[PromotionRow],
    *,
    today: date,
) -> Optional[PromotionRow]:
    """Return the first promotion, in list order, that targets ``product``.

    There is no priority field: when a product-targeted and a
    category-targeted promotion both match, whichever comes first in
    ``promotions`` wins and the other is ignored.
    """
    if product is None:
        return None
    for promotion in promotions:
        if promotion.is_active_on(today) and promotion_applies(promotion, product):
            return promotion
    return None


def resolve_promotion(
    item: LineItem,
    product: Optional[ProductRow],
    promotions: Sequence[PromotionRow],
    *,
    today: Optional[date] = None,
) -> PromotionMatch:
    """Compute the discount a line earns from the active promotions.

    Args:
        item (LineItem): Line whose captured unit price and quantity are used.
        product (ProductRow | None): Catalog entry for the line, or ``None``
            when the product is no longer in the catalog.
        promotions (Sequence[PromotionRow]): Candidate promotions in
            evaluation order. Inactive entries are skipped.
        today (date | None): Day used for the validity window. Defaults to
            :func:`current_day`.

    Returns:
        PromotionMatch: ``percentage`` promotions discount
            ``unit_price * quantity * value / 100``; ``fixed`` promotions
            discount ``value`` once per line regardless of quantity. The
            amount is clamped to ``[0, subtotal]``.
    """
    promotion = find_applicable_promotion(product, promotions, today=today or current_day())
    if promotion is None:
        return NO_PROMOTION

    subtotal = item.unit_price * item.quantity
    if promotion.discount_kind is DiscountKind.PERCENTAGE:
        raw = subtotal * (promotion.value / HUNDRED)
    else:
        raw = promotion.value

    discount = min(max(raw, ZERO), max(subtotal, ZERO))
    if discount != raw:
        log.debug(
            "Clamped discount of promotion '%s' on '%s' from %s to %s",
            promotion.promotion_id,
            item.product_id,
            raw,
            discount,
        )
    return PromotionMatch(discount=discount, promotion_name=promotion.name)


def price_line(
    item: LineItem,
    product: Optional[ProductRow],
    promotions: Sequence[PromotionRow],
    *,
    today: Optional[date] = None,
    vat_rate: Decimal = VAT_RATE,
) -> LineItem:
    """Return ``item`` with every derived field recomputed from scratch.

    The captured ``unit_price`` is authoritative even when the product has
    since changed in the catalog. A missing product prices the line without
    any promotion rather than dropping it, so totals stay auditable.
    """
    if product is None:
        log.warning("Product '%s' not in catalog; pricing line from captured price", item.product_id)

    match = resolve_promotion(item, product, promotions, today=today)
    subtotal = item.unit_price * item.quantity
    taxable_base = subtotal - match.discount
    tax = taxable_base * vat_rate
    return replace(
        item,
        subtotal=subtotal,
        discount=match.discount,
        promotion_name=match.promotion_name,
        tax=tax,
        total=taxable_base + tax,
    )


def reprice_items(
    items: Iterable[LineItem],
    catalog: Mapping[str, ProductRow],
    promotions: Sequence[PromotionRow],
    *,
    today: Optional[date] = None,
    vat_rate: Decimal = VAT_RATE,
) -> tuple[LineItem, ...]:
    """Price every line in order, dropping lines whose quantity is not positive."""
    today = today or current_day()
    return tuple(
        price_line(item, catalog.get(item.product_id), promotions, today=today, vat_rate=vat_rate)
        for item in items
        if item.quantity > ZERO
    )


def summarize(items: Iterable[LineItem]) -> BillTotals:
    """Sum line-level amounts into :class:`BillTotals`."""
    subtotal = discount = tax = total = ZERO
    line_count = 0
    unit_count = ZERO
    for item in items:
        subtotal += item.subtotal
        discount += item.discount
        tax += item.tax
        total += item.total
        line_count += 1
        unit_count += item.quantity
    return BillTotals(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=total,
        line_count=line_count,
        unit_count=unit_count,
    )
