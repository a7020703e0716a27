"""
Order validation and pricing.

Pure helpers: no database access, safe to call before any side effect.
"""
from typing import Any, Iterable, List, Mapping

from orderflow.models.order import LineItem, OrderTotals

DEFAULT_TAX_RATE = 0.08


def validate_order_data(order: Mapping[str, Any]) -> List[str]:
    """Return validation errors for a stored order document (empty = valid)."""
    errors: List[str] = []

    if not order.get("user_id"):
        errors.append("User ID is required")

    items = order.get("items")
    if not isinstance(items, list) or not items:
        errors.append("Order must contain at least one item")
        return errors

    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            errors.append(f"Item {index} is malformed")
            continue
        if not item.get("product_id"):
            errors.append(f"Item {index} is missing product_id")
        quantity = item.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            errors.append(f"Item {index} quantity must be a positive integer")
        price = item.get("price")
        if not isinstance(price, (int, float)) or isinstance(price, bool) or price < 0:
            errors.append(f"Item {index} price must be a non-negative number")

    return errors


def compute_order_totals(items: Iterable[LineItem], tax_rate: float = DEFAULT_TAX_RATE) -> OrderTotals:
    """subtotal = sum(price * quantity), tax = subtotal * rate, total = subtotal + tax."""
    subtotal = 0.0
    for item in items:
        subtotal += item.price * item.quantity
    tax = subtotal * tax_rate
    return OrderTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)
