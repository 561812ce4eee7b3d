"""Catalog browsing helpers for the product grid of a terminal."""

from __future__ import annotations

from typing import Iterable, List

from .data_manager import ProductRow


ALL_CATEGORIES = "all"


def sellable_products(products: Iterable[ProductRow], warehouse_id: str) -> List[ProductRow]:
    """Products with stock on hand in ``warehouse_id``, in catalog order."""
    return [product for product in products if product.stock_in(warehouse_id) > 0]


def list_categories(products: Iterable[ProductRow]) -> List[str]:
    """Return ``"all"`` followed by each category in first-seen order."""
    categories = [ALL_CATEGORIES]
    for product in products:
        if product.category not in categories:
            categories.append(product.category)
    return categories


def search_products(
    products: Iterable[ProductRow],
    term: str = "",
    category: str = ALL_CATEGORIES,
) -> List[ProductRow]:
    """Filter by category and a case-insensitive substring of name or id."""
    needle = term.lower()
    matches = []
    for product in products:
        if category != ALL_CATEGORIES and product.category != category:
            continue
        if needle and needle not in product.product_name.lower() and needle not in product.product_id.lower():
            continue
        matches.append(product)
    return matches
