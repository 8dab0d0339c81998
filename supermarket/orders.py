"""
Order store and status machine.

Status is a free-form label. New orders start as ``pending`` and an admin can
overwrite the status with any non-empty string; no transition graph is
enforced.
"""

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from supermarket.catalog import money, take_stock
from supermarket.db import execute, query, transaction
from supermarket.errors import AccessDenied, NotFound, ValidationError

DEFAULT_STATUS = "pending"
SUGGESTED_STATUSES = ("pending", "shipped", "completed", "cancelled")


@dataclass
class OrderItem:
    product_id: int
    product_name: str
    price: Decimal
    quantity: int
    order_id: Optional[int] = None

    @property
    def subtotal(self):
        return self.price * self.quantity

    @classmethod
    def from_row(cls, row):
        return cls(
            order_id=row["order_id"],
            product_id=row["product_id"],
            product_name=row["product_name"],
            price=money(row["price"]),
            quantity=row["quantity"],
        )


@dataclass
class Order:
    id: int
    user_id: int
    total: Decimal
    status: str = DEFAULT_STATUS
    created_at: Optional[str] = None
    items: List[OrderItem] = field(default_factory=list)
    username: Optional[str] = None

    @classmethod
    def from_row(cls, row, items=None):
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            total=money(row["total"]),
            status=row["status"],
            created_at=row["created_at"],
            items=items or [],
            username=row.get("username"),
        )

    def can_be_viewed_by(self, principal):
        return principal.get("role") == "admin" or principal.get("id") == self.user_id


def create_order(conn, user_id, total, items, reserve_stock=False) -> Order:
    """Write the order header and every item row, or nothing at all.

    ``items`` are anything with ``product_id``, ``product_name``, ``price`` and
    ``quantity`` (cart lines included). With ``reserve_stock`` each product's
    stock is decremented in the same transaction and a shortfall rolls the
    whole order back.
    """
    created_at = datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds")
    total = money(total)
    with transaction(conn):
        cur = execute(
            conn,
            "INSERT INTO orders (user_id, total, status, created_at) VALUES (?, ?, ?, ?)",
            (user_id, total, DEFAULT_STATUS, created_at),
            commit=False,
        )
        order_id = cur.lastrowid
        saved = []
        for item in items:
            execute(
                conn,
                "INSERT INTO order_items (order_id, product_id, product_name, price, quantity) "
                "VALUES (?, ?, ?, ?, ?)",
                (order_id, item.product_id, item.product_name, item.price, item.quantity),
                commit=False,
            )
            if reserve_stock:
                take_stock(conn, item.product_id, item.quantity)
            saved.append(OrderItem(item.product_id, item.product_name, money(item.price),
                                   item.quantity, order_id))
    return Order(order_id, user_id, total, DEFAULT_STATUS, created_at, saved)


def _items(conn, order_id):
    rows = query(
        conn,
        "SELECT order_id, product_id, product_name, price, quantity FROM order_items "
        "WHERE order_id = ? ORDER BY id",
        (order_id,),
    )
    return [OrderItem.from_row(r) for r in rows]


def get_by_id(conn, order_id) -> Order:
    row = query(
        conn,
        "SELECT o.*, u.username FROM orders o LEFT JOIN users u ON u.id = o.user_id WHERE o.id = ?",
        (order_id,),
        one=True,
    )
    if row is None:
        raise NotFound("Order not found")
    return Order.from_row(row, _items(conn, order_id))


def get_for_principal(conn, order_id, principal) -> Order:
    """Fetch an order for ``principal`` ({id, role}); owners and admins only."""
    order = get_by_id(conn, order_id)
    if not order.can_be_viewed_by(principal):
        raise AccessDenied()
    return order


def get_by_user_id(conn, user_id):
    rows = query(
        conn,
        "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, id DESC",
        (user_id,),
    )
    return [Order.from_row(r, _items(conn, r["id"])) for r in rows]


def get_all(conn):
    rows = query(
        conn,
        "SELECT o.*, u.username FROM orders o LEFT JOIN users u ON u.id = o.user_id "
        "ORDER BY o.created_at DESC, o.id DESC",
    )
    return [Order.from_row(r, _items(conn, r["id"])) for r in rows]


def set_status(conn, order_id, status):
    status = (status or "").strip()
    if not status:
        raise ValidationError("Invalid request")
    cur = execute(conn, "UPDATE orders SET status = ? WHERE id = ?", (status, order_id))
    if cur.rowcount == 0:
        raise NotFound("Order not found")


def delete_order(conn, order_id):
    """Hard delete: the order and its items go together."""
    with transaction(conn):
        execute(conn, "DELETE FROM order_items WHERE order_id = ?", (order_id,), commit=False)
        cur = execute(conn, "DELETE FROM orders WHERE id = ?", (order_id,), commit=False)
        if cur.rowcount == 0:
            raise NotFound("Order not found")
