"""Order pricing and validation (pure helpers)."""
import pytest

from orderflow.features.orders.validators import compute_order_totals, validate_order_data
from orderflow.models.order import ALLOWED_TRANSITIONS, LineItem, OrderStatus, can_transition


def test_totals_for_two_ten_dollar_items():
    totals = compute_order_totals([LineItem(product_id="burger", quantity=2, price=10.00)])

    assert totals.subtotal == pytest.approx(20.00)
    assert totals.tax == pytest.approx(1.60)
    assert totals.total == pytest.approx(21.60)


def test_totals_sum_across_items_with_custom_rate():
    items = [
        LineItem(product_id="a", quantity=3, price=2.50),
        LineItem(product_id="b", quantity=1, price=5.00),
    ]
    totals = compute_order_totals(items, tax_rate=0.10)

    assert totals.subtotal == pytest.approx(12.50)
    assert totals.tax == pytest.approx(1.25)
    assert totals.total == pytest.approx(13.75)


def test_valid_order_has_no_errors():
    order = {"user_id": "alice", "items": [{"product_id": "x", "quantity": 1, "price": 0}]}
    assert validate_order_data(order) == []


@pytest.mark.parametrize(
    "order, fragment",
    [
        ({"user_id": "alice", "items": []}, "at least one item"),
        ({"user_id": None, "items": [{"product_id": "x", "quantity": 1, "price": 1}]}, "User ID"),
        ({"user_id": "alice", "items": [{"product_id": "x", "quantity": 0, "price": 1}]}, "quantity"),
        ({"user_id": "alice", "items": [{"product_id": "x", "quantity": 1.5, "price": 1}]}, "quantity"),
        ({"user_id": "alice", "items": [{"product_id": "x", "quantity": 1, "price": -1}]}, "price"),
        ({"user_id": "alice", "items": [{"quantity": 1, "price": 1}]}, "product_id"),
    ],
)
def test_invalid_orders_report_reason(order, fragment):
    errors = validate_order_data(order)
    assert errors
    assert any(fragment in e for e in errors)


def test_terminal_statuses_allow_no_transitions():
    assert ALLOWED_TRANSITIONS[OrderStatus.COMPLETED] == frozenset()
    assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()
    assert not can_transition(OrderStatus.COMPLETED, OrderStatus.CANCELLED)


def test_pending_cannot_skip_to_completed():
    assert can_transition(OrderStatus.PENDING, OrderStatus.PROCESSING)
    assert not can_transition(OrderStatus.PENDING, OrderStatus.COMPLETED)
    assert can_transition(OrderStatus.CONFIRMED, OrderStatus.COMPLETED)
