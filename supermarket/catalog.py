"""
Catalog store: product records read by the cart and checkout.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from supermarket.db import execute, query
from supermarket.errors import InsufficientStock, NotFound, ValidationError

CENT = Decimal("0.01")
# largest value an sqlite INTEGER column holds
MAX_QUANTITY = 2**63 - 1


def money(value) -> Decimal:
    """Coerce a stored/submitted amount to a Decimal rounded to cents."""
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
        if amount.is_finite():
            # too many digits for the context raises InvalidOperation here
            return amount.quantize(CENT)
    except (InvalidOperation, TypeError, ValueError):
        pass
    raise ValidationError("Price must be a number")


@dataclass
class Product:
    id: int
    name: str
    quantity: int
    price: Decimal
    image: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row["id"],
            name=row["productName"],
            quantity=row["quantity"],
            price=money(row["price"]),
            image=row["image"],
        )

    def is_available(self):
        return self.quantity > 0


def list_products(conn):
    rows = query(conn, "SELECT id, productName, quantity, price, image FROM products ORDER BY id")
    return [Product.from_row(r) for r in rows]


def get_product(conn, product_id) -> Product:
    """Return the product or raise NotFound."""
    row = query(
        conn,
        "SELECT id, productName, quantity, price, image FROM products WHERE id = ?",
        (product_id,),
        one=True,
    )
    if row is None:
        raise NotFound("Product not found")
    return Product.from_row(row)


def save_product(conn, name, quantity, price, image=None, product_id=None) -> Product:
    """Create a product, or overwrite it when ``product_id`` names an existing one."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required.")
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Price/stock must be numeric.")
    price = money(price)
    if price < 0 or quantity < 0:
        raise ValidationError("Price and stock must be >= 0.")
    if quantity > MAX_QUANTITY:
        raise ValidationError("Stock is too large.")

    if product_id is not None:
        cur = execute(
            conn,
            "UPDATE products SET productName = ?, quantity = ?, price = ?, image = ? WHERE id = ?",
            (name, quantity, price, image, product_id),
        )
        if cur.rowcount == 0:
            raise NotFound("Product not found")
    else:
        cur = execute(
            conn,
            "INSERT INTO products (productName, quantity, price, image) VALUES (?, ?, ?, ?)",
            (name, quantity, price, image),
        )
        product_id = cur.lastrowid
    return get_product(conn, product_id)


def delete_product(conn, product_id):
    cur = execute(conn, "DELETE FROM products WHERE id = ?", (product_id,))
    if cur.rowcount == 0:
        raise NotFound("Product not found")


def take_stock(conn, product_id, quantity):
    """Decrement stock only if enough is left. Runs inside the caller's transaction."""
    cur = execute(
        conn,
        "UPDATE products SET quantity = quantity - ? WHERE id = ? AND quantity >= ?",
        (quantity, product_id, quantity),
        commit=False,
    )
    if cur.rowcount == 0:
        raise InsufficientStock()
