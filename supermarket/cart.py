"""
Cart stores: one cart per user, kept either on the session or in the cart table.

Both backends share :class:`CartStore` so checkout never needs to know which
one is in use. Lines carry a snapshot of the product name, price and image
taken when the product was first added.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from supermarket.catalog import MAX_QUANTITY, get_product, money
from supermarket.db import execute, query
from supermarket.errors import InsufficientStock, NotFound, ValidationError

INCREASE = "increase"
DECREASE = "decrease"


@dataclass
class CartLine:
    product_id: Optional[int]
    product_name: Optional[str]
    price: Optional[Decimal]
    quantity: Optional[int]
    image: Optional[str] = None

    @property
    def line_total(self):
        return self.price * self.quantity

    def to_session(self):
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "price": str(self.price),
            "quantity": self.quantity,
            "image": self.image,
        }

    @classmethod
    def from_session(cls, raw):
        # session data is client-held; bad values become None and fail at checkout
        return cls(
            product_id=_as_int(raw.get("productId")),
            product_name=raw.get("productName"),
            price=_as_money(raw.get("price")),
            quantity=_as_int(raw.get("quantity")),
            image=raw.get("image"),
        )

    @classmethod
    def from_row(cls, row):
        return cls(
            product_id=row["product_id"],
            product_name=row["product_name"],
            price=money(row["price"]),
            quantity=row["quantity"],
            image=row["image"],
        )


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_money(value):
    try:
        return money(str(value))
    except ValidationError:
        return None


def parse_quantity(raw):
    """Return the submitted quantity as an int >= 1, or None when unusable."""
    qty = _as_int(raw)
    if qty is None or not 1 <= qty <= MAX_QUANTITY:
        return None
    return qty


def next_quantity(current, action=None, raw_quantity=None):
    """Apply one of the three cart update modes to ``current``.

    ``increase`` adds one, ``decrease`` removes one but never goes below 1,
    anything else sets the submitted quantity when it is a whole number >= 1
    and leaves ``current`` unchanged otherwise.
    """
    if action == INCREASE:
        return min(current + 1, MAX_QUANTITY)
    if action == DECREASE:
        return current - 1 if current > 1 else current
    qty = parse_quantity(raw_quantity)
    return current if qty is None else qty


class CartStore(ABC):
    """Per-user cart contract shared by every backend."""

    def __init__(self, conn):
        # used for catalog lookups on add
        self.conn = conn

    @abstractmethod
    def get(self, user_key):
        """Return the user's lines; an empty cart is an empty list."""

    def add(self, user_key, product_id, quantity=1):
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        product = get_product(self.conn, product_id)
        # checked against live stock for this call only, checkout reconciles
        if quantity > product.quantity:
            raise InsufficientStock()
        return self._merge(user_key, product, quantity)

    @abstractmethod
    def _merge(self, user_key, product, quantity):
        """Add ``quantity`` to an existing line or insert a snapshot line."""

    @abstractmethod
    def update_quantity(self, user_key, product_id, action=None, raw_quantity=None):
        """Change one line's quantity; raises NotFound for an unknown line."""

    @abstractmethod
    def remove(self, user_key, product_id):
        """Drop a line. Removing a line that isn't there is a no-op."""

    @abstractmethod
    def clear(self, user_key):
        """Empty the cart."""

    def total(self, user_key):
        lines = [line for line in self.get(user_key) if line.price is not None and line.quantity is not None]
        return sum((line.line_total for line in lines), Decimal("0.00"))

    def count(self, user_key):
        return sum(line.quantity or 0 for line in self.get(user_key))


class SessionCartStore(CartStore):
    """Cart kept on the user's session under ``"cart"``.

    A session belongs to one logged-in user, so ``user_key`` is not used to
    partition the data.
    """

    KEY = "cart"

    def __init__(self, conn, session):
        super().__init__(conn)
        self.session = session

    def _raw(self):
        raw = self.session.get(self.KEY)
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, dict)]

    def _save(self, raw):
        # reassign so the session notices nested changes
        self.session[self.KEY] = raw

    def get(self, user_key):
        return [CartLine.from_session(item) for item in self._raw()]

    def _merge(self, user_key, product, quantity):
        raw = self._raw()
        for item in raw:
            if _as_int(item.get("productId")) == product.id:
                item["quantity"] = (_as_int(item.get("quantity")) or 0) + quantity
                self._save(raw)
                return CartLine.from_session(item)
        line = CartLine(product.id, product.name, product.price, quantity, product.image)
        raw.append(line.to_session())
        self._save(raw)
        return line

    def update_quantity(self, user_key, product_id, action=None, raw_quantity=None):
        raw = self._raw()
        for item in raw:
            if _as_int(item.get("productId")) == product_id:
                item["quantity"] = next_quantity(_as_int(item.get("quantity")) or 1, action, raw_quantity)
                self._save(raw)
                return CartLine.from_session(item)
        raise NotFound("Item not found in cart")

    def remove(self, user_key, product_id):
        raw = self._raw()
        kept = [item for item in raw if _as_int(item.get("productId")) != product_id]
        if len(kept) != len(raw):
            self._save(kept)

    def clear(self, user_key):
        self._save([])


class DatabaseCartStore(CartStore):
    """Cart persisted in the ``cart`` table, keyed by user id."""

    def get(self, user_key):
        rows = query(
            self.conn,
            "SELECT product_id, product_name, price, quantity, image FROM cart "
            "WHERE user_id = ? ORDER BY id",
            (user_key,),
        )
        return [CartLine.from_row(r) for r in rows]

    def _line(self, user_key, product_id):
        row = query(
            self.conn,
            "SELECT product_id, product_name, price, quantity, image FROM cart "
            "WHERE user_id = ? AND product_id = ?",
            (user_key, product_id),
            one=True,
        )
        return CartLine.from_row(row) if row else None

    def _merge(self, user_key, product, quantity):
        # the existing line keeps its original snapshot, only quantity grows
        execute(
            self.conn,
            "INSERT INTO cart (user_id, product_id, product_name, price, quantity, image) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT (user_id, product_id) DO UPDATE SET quantity = quantity + excluded.quantity",
            (user_key, product.id, product.name, product.price, quantity, product.image),
        )
        return self._line(user_key, product.id)

    def update_quantity(self, user_key, product_id, action=None, raw_quantity=None):
        line = self._line(user_key, product_id)
        if line is None:
            raise NotFound("Item not found in cart")
        line.quantity = next_quantity(line.quantity, action, raw_quantity)
        execute(
            self.conn,
            "UPDATE cart SET quantity = ? WHERE user_id = ? AND product_id = ?",
            (line.quantity, user_key, product_id),
        )
        return line

    def remove(self, user_key, product_id):
        execute(self.conn, "DELETE FROM cart WHERE user_id = ? AND product_id = ?", (user_key, product_id))

    def clear(self, user_key):
        execute(self.conn, "DELETE FROM cart WHERE user_id = ?", (user_key,))
