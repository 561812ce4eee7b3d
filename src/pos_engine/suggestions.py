"""Debounced upsell suggestions for the cart being rung up.

The advisor never touches a bill on its own. It watches cart changes, waits
for the operator to stop typing, asks an external advisor coroutine for a
suggestion and hands the result to a listener. Accepting a suggestion goes
through the regular :meth:`TerminalSession.add_item` path.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from . import log
from .constants import SUGGESTION_DEBOUNCE_SECONDS
from .data_manager import ProductRow
from .pricing import LineItem
from .tabs import Bill, TerminalSession


@dataclass(frozen=True)
class UpsellSuggestion:
    message: str
    suggested_product_id: Optional[str] = None


SuggestionFetcher = Callable[[Sequence[LineItem], Sequence[ProductRow]], Awaitable[Optional[UpsellSuggestion]]]
SuggestionListener = Callable[[Optional[UpsellSuggestion]], None]


class UpsellAdvisor:
    """Debounce cart changes into at most one in-flight suggestion request.

    Every cart change cancels the pending request and schedules a new one
    after ``debounce`` seconds. Results belonging to a superseded cart are
    dropped. A failing fetcher is logged and clears the suggestion.
    """

    def __init__(
        self,
        fetch: SuggestionFetcher,
        on_suggestion: SuggestionListener,
        *,
        products: Iterable[ProductRow] = (),
        debounce: float = SUGGESTION_DEBOUNCE_SECONDS,
    ) -> None:
        self._fetch = fetch
        self._on_suggestion = on_suggestion
        self._products = tuple(products)
        self._debounce = debounce
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._suggestion: Optional[UpsellSuggestion] = None

    @property
    def suggestion(self) -> Optional[UpsellSuggestion]:
        return self._suggestion

    @property
    def debounce(self) -> float:
        return self._debounce

    @property
    def products(self) -> tuple[ProductRow, ...]:
        return self._products

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def cart_changed(self, items: Sequence[LineItem]) -> Optional[asyncio.Task]:
        """Schedule a suggestion for ``items``; must run inside an event loop.

        An empty cart clears the current suggestion immediately and schedules
        nothing.
        """
        self._generation += 1
        self._cancel_pending()
        if not items:
            self._publish(None)
            return None
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._generation, tuple(items)))
        return self._task

    def cancel(self) -> None:
        """Drop any pending request without touching the current suggestion."""
        self._generation += 1
        self._cancel_pending()

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, generation: int, items: tuple[LineItem, ...]) -> None:
        await asyncio.sleep(self._debounce)
        try:
            suggestion = await self._fetch(items, self._products)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("Failed to get upsell suggestion: %s", exc)
            suggestion = None

        if generation != self._generation:
            log.debug("Discarded stale upsell suggestion (generation %s)", generation)
            return
        self._publish(suggestion)

    def _publish(self, suggestion: Optional[UpsellSuggestion]) -> None:
        self._suggestion = suggestion
        self._on_suggestion(suggestion)

    def _cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


def accept_suggestion(terminal: TerminalSession, bill_id: int, suggestion: UpsellSuggestion) -> Optional[Bill]:
    """Add the suggested product to ``bill_id``.

    Returns ``None`` when the suggestion carries no product. Unknown product
    ids raise :class:`MissingReferenceError` from the terminal.
    """
    if suggestion.suggested_product_id is None:
        return None
    log.info("Accepted upsell suggestion '%s'", suggestion.suggested_product_id)
    return terminal.add_product_by_id(bill_id, suggestion.suggested_product_id)
