"""
Checkout: turn a user's cart into a durable order.
"""

import logging
from decimal import Decimal

from supermarket.errors import CheckoutFailed, EmptyCart, InvalidCartData, PersistenceFailure
from supermarket.orders import create_order

log = logging.getLogger(__name__)


def _is_valid(line):
    return bool(
        line.product_id and line.product_id > 0
        and line.price is not None and line.price > 0
        and line.quantity and line.quantity > 0
    )


def cart_total(lines):
    """Sum of snapshot price times quantity over the given lines."""
    return sum((line.price * line.quantity for line in lines), Decimal("0.00"))


def checkout(conn, cart_store, user_id, reserve_stock=False):
    """Create an order from ``user_id``'s cart and empty the cart.

    The total uses the prices captured in the cart, not the live catalog.
    Nothing in the cart changes unless the order was committed; a failure to
    clear the cart afterwards is logged and the order still stands.
    """
    lines = cart_store.get(user_id)
    if not lines:
        raise EmptyCart()

    for line in lines:
        if not _is_valid(line):
            log.error("Invalid cart line for user %s: %r", user_id, line)
            raise InvalidCartData()

    total = cart_total(lines)
    log.info("Checkout for user %s: %d line(s), total %s", user_id, len(lines), total)

    try:
        order = create_order(conn, user_id, total, lines, reserve_stock=reserve_stock)
    except PersistenceFailure as exc:
        log.error("Error creating order for user %s: %r", user_id, exc.__cause__)
        raise CheckoutFailed() from exc

    try:
        cart_store.clear(user_id)
    except Exception:
        log.exception("Order %s committed but the cart of user %s was not cleared", order.id, user_id)

    return order
