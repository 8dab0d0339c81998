"""
Database helpers: raw parameterized SQL over sqlite3.
"""

import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path

from supermarket.errors import PersistenceFailure

# money travels as Decimal in Python and is stored as its exact string form;
# TEXT columns keep sqlite from coercing it to REAL
sqlite3.register_adapter(Decimal, str)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        password TEXT NOT NULL,
        address TEXT NOT NULL,
        contact TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user',
        verified INTEGER NOT NULL DEFAULT 0
    );
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        productName TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
        price TEXT NOT NULL CHECK (CAST(price AS NUMERIC) >= 0),
        image TEXT
    );
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        total TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS order_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
        product_id INTEGER NOT NULL,
        product_name TEXT NOT NULL,
        price TEXT NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0)
    );
    CREATE TABLE IF NOT EXISTS cart (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        product_id INTEGER NOT NULL,
        product_name TEXT NOT NULL,
        price TEXT NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        image TEXT,
        UNIQUE (user_id, product_id)
    );
"""


def connect(path):
    """Open a connection with dict-friendly rows and foreign keys enforced."""
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_schema(conn):
    """Create tables if they don't exist yet."""
    conn.executescript(SCHEMA)
    conn.commit()


def query(conn, sql, params=(), one=False):
    """Execute a SELECT and return rows as dicts (or one dict / None)."""
    try:
        rows = [dict(r) for r in conn.execute(sql, params).fetchall()]
    except (sqlite3.Error, OverflowError) as exc:
        raise PersistenceFailure() from exc
    if one:
        return rows[0] if rows else None
    return rows


def execute(conn, sql, params=(), commit=True):
    """Execute an INSERT / UPDATE / DELETE and return the cursor.

    Pass ``commit=False`` inside a :func:`transaction` block.
    """
    try:
        cur = conn.execute(sql, params)
        if commit:
            conn.commit()
    except (sqlite3.Error, OverflowError) as exc:
        conn.rollback()
        raise PersistenceFailure() from exc
    return cur


@contextmanager
def transaction(conn):
    """All-or-nothing scope: commit on success, roll back on any error."""
    try:
        yield conn
        conn.commit()
    except (sqlite3.Error, OverflowError) as exc:
        conn.rollback()
        raise PersistenceFailure() from exc
    except Exception:
        conn.rollback()
        raise
