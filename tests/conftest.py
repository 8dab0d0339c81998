import os
import tempfile

# settings are read when the app module is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="supermarket-logs-"))
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from werkzeug.security import generate_password_hash

from supermarket import accounts
from supermarket import catalog as catalog_store
from supermarket.app import app as flask_app
from supermarket.db import connect, execute, init_schema
from supermarket.errors import DispatchFailure
from supermarket.mailer import mail
from supermarket.otp import OTPCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeMailer:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, to, subject, body_html):
        if self.fail:
            raise DispatchFailure()
        self.sent.append((to, subject, body_html))


@pytest.fixture
def conn(tmp_path):
    c = connect(str(tmp_path / "shop.db"))
    init_schema(c)
    yield c
    c.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def otp_cache(clock):
    return OTPCache(ttl_seconds=180, clock=clock)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def failing_mailer():
    return FakeMailer(fail=True)


@pytest.fixture
def make_user():
    def _make(conn, email="alice@example.com", password="secret1", role="user", verified=True):
        cur = execute(
            conn,
            "INSERT INTO users (username, email, password, address, contact, role, verified) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (email.split("@")[0], email, generate_password_hash(password),
             "1 Market Street", "91234567", role, int(verified)),
        )
        return accounts.get_user(conn, cur.lastrowid)
    return _make


@pytest.fixture
def make_product():
    def _make(conn, name="Apple", quantity=10, price="2.50", image=None):
        return catalog_store.save_product(conn, name, quantity, price, image=image)
    return _make


@pytest.fixture
def app(tmp_path, clock):
    flask_app.config.update(
        TESTING=True,
        SECRET_KEY="test-secret",
        DATABASE=str(tmp_path / "app.db"),
        CART_BACKEND="session",
        DECREMENT_STOCK_ON_CHECKOUT=False,
        MAIL_SUPPRESS_SEND=True,
        UPLOAD_FOLDER=str(tmp_path / "images"),
    )
    mail.init_app(flask_app)
    flask_app.extensions["otp_cache"] = OTPCache(ttl_seconds=180, clock=clock)
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_conn(app):
    c = connect(app.config["DATABASE"])
    init_schema(c)
    yield c
    c.close()
