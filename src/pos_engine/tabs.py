"""Bills (tabs) and the per-terminal tab manager.

A :class:`TerminalSession` is constructed at terminal start and owns every
open bill on that terminal. Bills are immutable snapshots; each mutating
operation builds a new bill, re-prices it synchronously through
:func:`pos_engine.pricing.reprice_items` and swaps it into its slot, so no
caller ever observes stale totals.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from . import log
from .constants import BILL_NAME_PREFIX, VAT_RATE, WALK_IN_CUSTOMER_ID
from .data_manager import ProductRow, PromotionRow
from .errors import ConfirmationRequired, MissingReferenceError
from .pricing import (
    BillTotals,
    LineItem,
    Number,
    current_day,
    new_line_item,
    reprice_items,
    summarize,
    to_decimal,
)


@dataclass(frozen=True)
class Bill:
    """One in-progress sale on the terminal."""

    bill_id: int
    name: str
    customer_id: str
    items: tuple[LineItem, ...] = ()

    @property
    def totals(self) -> BillTotals:
        return summarize(self.items)

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find_item(self, product_id: str) -> Optional[LineItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None


class TerminalSession:
    """Tab manager for a single POS terminal.

    Exactly one bill is active at all times. Bill display names come from a
    counter that is never rewound, so two tabs never share a name even after
    closes.
    """

    def __init__(
        self,
        catalog: Iterable[ProductRow],
        promotions: Sequence[PromotionRow] = (),
        *,
        walk_in_customer_id: str = WALK_IN_CUSTOMER_ID,
        vat_rate: Decimal = VAT_RATE,
        clock: Callable[[], date] = current_day,
    ) -> None:
        self._catalog: Dict[str, ProductRow] = {product.product_id: product for product in catalog}
        self._promotions = tuple(promotions)
        self._walk_in_customer_id = walk_in_customer_id
        self._vat_rate = vat_rate
        self._clock = clock
        self._bill_ids = itertools.count(1)
        self._bill_numbers = itertools.count(1)
        first = self._new_bill()
        self._bills: List[Bill] = [first]
        self._active_bill_id = first.bill_id
        log.info("Terminal session started with '%s'", first.name)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def bills(self) -> tuple[Bill, ...]:
        return tuple(self._bills)

    @property
    def active_bill(self) -> Bill:
        return self.get_bill(self._active_bill_id)

    @property
    def catalog(self) -> Dict[str, ProductRow]:
        return dict(self._catalog)

    @property
    def promotions(self) -> tuple[PromotionRow, ...]:
        return self._promotions

    @property
    def vat_rate(self) -> Decimal:
        return self._vat_rate

    def get_bill(self, bill_id: int) -> Bill:
        return self._bills[self._index_of(bill_id)]

    def get_product(self, product_id: str) -> ProductRow:
        try:
            return self._catalog[product_id]
        except KeyError as exc:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise MissingReferenceError(f"Unknown product id: {product_id}") from exc

    # ------------------------------------------------------------------
    # Tab lifecycle
    # ------------------------------------------------------------------

    def select_bill(self, bill_id: int) -> Bill:
        """Make ``bill_id`` the active bill without re-pricing anything."""
        bill = self.get_bill(bill_id)
        self._active_bill_id = bill.bill_id
        return bill

    def open_new_bill(self) -> Bill:
        bill = self._new_bill()
        self._bills.append(bill)
        self._active_bill_id = bill.bill_id
        log.info("Opened bill '%s' (id=%s)", bill.name, bill.bill_id)
        return bill

    def close_bill(self, bill_id: int, *, confirm: bool = False) -> Bill:
        """Discard a bill and return the bill that is active afterwards.

        Closing a bill that holds items throws its contents away, so the
        caller must pass ``confirm=True``. Closing the last bill leaves a
        fresh default bill in its place. When the closed bill was active the
        pointer falls back to the preceding tab (clamped to the first one).

        Raises:
            MissingReferenceError: If ``bill_id`` is unknown.
            ConfirmationRequired: If the bill has items and ``confirm`` is
                ``False``.
        """
        index = self._index_of(bill_id)
        bill = self._bills[index]
        if bill.items and not confirm:
            log.warning("Refused to close bill '%s' with %d items without confirmation", bill.name, len(bill.items))
            raise ConfirmationRequired(f"Closing '{bill.name}' discards {len(bill.items)} item(s)")

        del self._bills[index]
        log.info("Closed bill '%s' (id=%s, items=%d)", bill.name, bill.bill_id, len(bill.items))

        if not self._bills:
            replacement = self._new_bill()
            self._bills.append(replacement)
            self._active_bill_id = replacement.bill_id
        elif self._active_bill_id == bill_id:
            self._active_bill_id = self._bills[max(0, index - 1)].bill_id
        return self.active_bill

    def recycle_bill(self, bill_id: int) -> Bill:
        """Replace a bill with an empty one in the same tab slot.

        The slot keeps its display name and stays active if it was; the new
        bill gets a fresh identifier and the walk-in customer.
        """
        index = self._index_of(bill_id)
        old = self._bills[index]
        fresh = Bill(bill_id=next(self._bill_ids), name=old.name, customer_id=self._walk_in_customer_id)
        self._bills[index] = fresh
        if self._active_bill_id == bill_id:
            self._active_bill_id = fresh.bill_id
        log.info("Recycled bill slot '%s' (id %s -> %s)", old.name, old.bill_id, fresh.bill_id)
        return fresh

    # ------------------------------------------------------------------
    # Line item mutations
    # ------------------------------------------------------------------

    def add_item(self, bill_id: int, product: ProductRow) -> Bill:
        """Add one unit of ``product``; an existing line is bumped, not duplicated."""
        bill = self.get_bill(bill_id)
        existing = bill.find_item(product.product_id)
        if existing is not None:
            items = [
                replace(item, quantity=item.quantity + 1) if item.product_id == product.product_id else item
                for item in bill.items
            ]
        else:
            items = [*bill.items, new_line_item(product)]
        return self._store(replace(bill, items=tuple(items)))

    def add_product_by_id(self, bill_id: int, product_id: str) -> Bill:
        return self.add_item(bill_id, self.get_product(product_id))

    def update_quantity(self, bill_id: int, product_id: str, quantity: Number) -> Bill:
        """Set a line's quantity; zero or less removes the line."""
        bill = self.get_bill(bill_id)
        new_quantity = to_decimal(quantity)
        items = [
            replace(item, quantity=new_quantity) if item.product_id == product_id else item
            for item in bill.items
        ]
        return self._store(replace(bill, items=tuple(items)))

    def remove_item(self, bill_id: int, product_id: str) -> Bill:
        bill = self.get_bill(bill_id)
        items = [item for item in bill.items if item.product_id != product_id]
        return self._store(replace(bill, items=tuple(items)))

    def set_customer(self, bill_id: int, customer_id: str) -> Bill:
        """Bind a customer to the bill. Pricing is not affected."""
        bill = self.get_bill(bill_id)
        updated = replace(bill, customer_id=customer_id)
        self._bills[self._index_of(bill_id)] = updated
        return updated

    def reprice(self, bill: Bill) -> Bill:
        """Return ``bill`` with every line priced against today's promotions."""
        items = reprice_items(
            bill.items,
            self._catalog,
            self._promotions,
            today=self._clock(),
            vat_rate=self._vat_rate,
        )
        return replace(bill, items=items)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_bill(self) -> Bill:
        return Bill(
            bill_id=next(self._bill_ids),
            name=f"{BILL_NAME_PREFIX} {next(self._bill_numbers)}",
            customer_id=self._walk_in_customer_id,
        )

    def _store(self, bill: Bill) -> Bill:
        priced = self.reprice(bill)
        self._bills[self._index_of(bill.bill_id)] = priced
        log.debug("Re-priced bill '%s': total=%s", priced.name, priced.total)
        return priced

    def _index_of(self, bill_id: int) -> int:
        for index, bill in enumerate(self._bills):
            if bill.bill_id == bill_id:
                return index
        log.warning("Bill lookup failed for id '%s'", bill_id)
        raise MissingReferenceError(f"Unknown bill id: {bill_id}")
