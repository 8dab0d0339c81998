from decimal import Decimal

import pytest

from supermarket import catalog as catalog_store
from supermarket.cart import DatabaseCartStore, SessionCartStore, next_quantity, parse_quantity
from supermarket.catalog import MAX_QUANTITY
from supermarket.errors import InsufficientStock, NotFound, ValidationError


@pytest.fixture
def user(conn, make_user):
    return make_user(conn)


@pytest.fixture(params=["session", "database"])
def store(request, conn):
    if request.param == "session":
        return SessionCartStore(conn, {})
    return DatabaseCartStore(conn)


def test_empty_cart_is_empty_list(store, user):
    assert store.get(user.id) == []
    assert store.total(user.id) == Decimal("0.00")
    assert store.count(user.id) == 0


def test_add_within_stock_creates_snapshot_line(store, user, conn, make_product):
    p = make_product(conn, "Apple", quantity=5, price="2.50", image="apple.png")
    store.add(user.id, p.id, 5)

    [line] = store.get(user.id)
    assert line.product_id == p.id
    assert line.product_name == "Apple"
    assert line.price == Decimal("2.50")
    assert line.quantity == 5
    assert line.image == "apple.png"


def test_add_more_than_stock_fails(store, user, conn, make_product):
    p = make_product(conn, quantity=2)
    with pytest.raises(InsufficientStock):
        store.add(user.id, p.id, 3)
    assert store.get(user.id) == []


def test_repeated_adds_merge_into_one_line(store, user, conn, make_product):
    p = make_product(conn, quantity=5)
    store.add(user.id, p.id, 3)
    store.add(user.id, p.id, 3)

    lines = store.get(user.id)
    assert len(lines) == 1
    # stock is checked per call, not against the running cart quantity
    assert lines[0].quantity == 6


def test_add_unknown_product(store, user):
    with pytest.raises(NotFound):
        store.add(user.id, 999, 1)


def test_add_rejects_non_positive_quantity(store, user, conn, make_product):
    p = make_product(conn)
    with pytest.raises(ValidationError):
        store.add(user.id, p.id, 0)


def test_price_change_does_not_touch_carted_line(store, user, conn, make_product):
    p = make_product(conn, "Milk", quantity=10, price="2.00")
    store.add(user.id, p.id, 1)
    catalog_store.save_product(conn, "Milk", 10, "9.99", product_id=p.id)
    store.add(user.id, p.id, 1)

    [line] = store.get(user.id)
    assert line.price == Decimal("2.00")
    assert line.quantity == 2
    assert store.total(user.id) == Decimal("4.00")


def test_update_increase_and_decrease(store, user, conn, make_product):
    p = make_product(conn)
    store.add(user.id, p.id, 2)

    assert store.update_quantity(user.id, p.id, action="increase").quantity == 3
    assert store.update_quantity(user.id, p.id, action="decrease").quantity == 2
    assert store.get(user.id)[0].quantity == 2


def test_decrease_floors_at_one(store, user, conn, make_product):
    p = make_product(conn)
    store.add(user.id, p.id, 1)

    store.update_quantity(user.id, p.id, action="decrease")
    store.update_quantity(user.id, p.id, action="decrease")

    [line] = store.get(user.id)
    assert line.quantity == 1


@pytest.mark.parametrize("raw, expected", [
    ("7", 7), ("0", 2), ("-3", 2), ("abc", 2), (None, 2), (str(10**20), 2),
])
def test_update_explicit_quantity(store, user, conn, make_product, raw, expected):
    p = make_product(conn)
    store.add(user.id, p.id, 2)
    store.update_quantity(user.id, p.id, raw_quantity=raw)
    assert store.get(user.id)[0].quantity == expected


def test_update_missing_line(store, user):
    with pytest.raises(NotFound):
        store.update_quantity(user.id, 42, action="increase")


def test_remove_is_idempotent(store, user, conn, make_product):
    apple = make_product(conn, "Apple")
    pear = make_product(conn, "Pear")
    store.add(user.id, apple.id, 1)
    store.add(user.id, pear.id, 1)

    store.remove(user.id, apple.id)
    store.remove(user.id, apple.id)
    store.remove(user.id, 12345)

    assert [line.product_id for line in store.get(user.id)] == [pear.id]


def test_clear(store, user, conn, make_product):
    p = make_product(conn)
    store.add(user.id, p.id, 1)
    store.clear(user.id)
    assert store.get(user.id) == []


def test_database_carts_are_per_user(conn, make_user, make_product):
    alice = make_user(conn, "alice@example.com")
    bob = make_user(conn, "bob@example.com")
    p = make_product(conn)
    store = DatabaseCartStore(conn)

    store.add(alice.id, p.id, 2)

    assert store.count(alice.id) == 2
    assert store.get(bob.id) == []


def test_session_cart_tolerates_tampered_values(conn):
    session = {"cart": [{"productId": "x", "productName": "Bad", "price": "nope", "quantity": "2"}, "junk"]}
    store = SessionCartStore(conn, session)

    [line] = store.get(1)
    assert line.product_id is None
    assert line.price is None
    assert line.quantity == 2
    assert store.total(1) == Decimal("0.00")


def test_next_quantity_modes():
    assert next_quantity(4, "increase") == 5
    assert next_quantity(4, "decrease") == 3
    assert next_quantity(1, "decrease") == 1
    assert next_quantity(4, "set", "10") == 10
    assert next_quantity(4, None, "1.5") == 4


def test_quantity_ceiling():
    assert parse_quantity(str(MAX_QUANTITY)) == MAX_QUANTITY
    assert parse_quantity(str(MAX_QUANTITY + 1)) is None
    assert next_quantity(MAX_QUANTITY, "increase") == MAX_QUANTITY


def test_session_price_too_large_for_cents_is_dropped(conn):
    store = SessionCartStore(conn, {"cart": [{"productId": 1, "productName": "X", "price": "1e30", "quantity": 1}]})
    assert store.get(1)[0].price is None
