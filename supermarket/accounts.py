"""
Accounts: registration, email verification by one-time code, login.

A self-registered account starts unverified and cannot log in until the
code mailed to it is redeemed. Admin accounts created from the back-office
are verified from the start.
"""

import re
from dataclasses import dataclass

from werkzeug.security import check_password_hash, generate_password_hash

from supermarket.db import execute, query
from supermarket.errors import (
    DispatchFailure,
    EmailTaken,
    InvalidCredentials,
    NotFound,
    NotVerified,
    PersistenceFailure,
    ValidationError,
)
from supermarket.mailer import otp_email

ROLE_USER = "user"
ROLE_ADMIN = "admin"
REQUIRED_FIELDS = ("username", "email", "password", "address", "contact")
MIN_PASSWORD_LENGTH = 6
CONTACT_LENGTH = 8

EMAIL_RE = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")


@dataclass
class User:
    id: int
    username: str
    email: str
    address: str
    contact: str
    role: str = ROLE_USER
    verified: bool = False

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            address=row["address"],
            contact=row["contact"],
            role=row["role"],
            verified=bool(row["verified"]),
        )

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    def to_session(self):
        return {"id": self.id, "username": self.username, "email": self.email, "role": self.role}


def normalize_email(email):
    return (email or "").strip().lower()


def validate_registration(fields):
    """Return cleaned registration fields or raise ValidationError."""
    data = {name: (fields.get(name) or "").strip() for name in REQUIRED_FIELDS}
    data["password"] = fields.get("password") or ""
    data["email"] = normalize_email(data["email"])

    if not all(data.values()):
        raise ValidationError("All fields are required.")
    if not EMAIL_RE.match(data["email"]):
        raise ValidationError("Please enter a valid email address.")
    if len(data["password"]) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(data["contact"]) != CONTACT_LENGTH:
        raise ValidationError(f"Contact number must be exactly {CONTACT_LENGTH} digits")
    if not re.fullmatch(r"[0-9]+", data["contact"]):
        raise ValidationError("Contact number must contain only digits")
    return data


def find_by_email(conn, email):
    row = query(conn, "SELECT * FROM users WHERE email = ?", (normalize_email(email),), one=True)
    return row


def get_user(conn, user_id) -> User:
    row = query(conn, "SELECT * FROM users WHERE id = ?", (user_id,), one=True)
    if row is None:
        raise NotFound("User not found")
    return User.from_row(row)


def _insert_user(conn, data, role, verified) -> User:
    if find_by_email(conn, data["email"]) is not None:
        raise EmailTaken()
    try:
        cur = execute(
            conn,
            "INSERT INTO users (username, email, password, address, contact, role, verified) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (data["username"], data["email"], generate_password_hash(data["password"]),
             data["address"], data["contact"], role, int(verified)),
        )
    except PersistenceFailure as exc:
        # lost a race against a concurrent registration for the same email
        if find_by_email(conn, data["email"]) is not None:
            raise EmailTaken() from exc
        raise
    return get_user(conn, cur.lastrowid)


def _send_code(user, otp_cache, mailer):
    code = otp_cache.issue(user.email)
    subject, body = otp_email(user.username, code, otp_cache.ttl_seconds)
    try:
        mailer.send(user.email, subject, body)
    except DispatchFailure:
        # an undelivered code must not stay redeemable; resend recovers
        otp_cache.discard(user.email)
        raise


def register(conn, fields, otp_cache, mailer) -> User:
    """Create an unverified user and mail them a verification code.

    If the email can't be sent the account still exists; the caller gets
    DispatchFailure and the user recovers with :func:`request_otp`.
    """
    data = validate_registration(fields)
    user = _insert_user(conn, data, ROLE_USER, verified=False)
    _send_code(user, otp_cache, mailer)
    return user


def request_otp(conn, email, otp_cache, mailer) -> bool:
    """Re-send a verification code. Returns False if the user is already verified."""
    row = find_by_email(conn, email)
    if row is None:
        raise NotFound("No account found for that email.")
    user = User.from_row(row)
    if user.verified:
        return False
    _send_code(user, otp_cache, mailer)
    return True


def verify_otp(conn, email, code, otp_cache) -> User:
    """Redeem ``code`` and mark the account verified. One-shot."""
    email = normalize_email(email)
    otp_cache.redeem(email, code)
    cur = execute(conn, "UPDATE users SET verified = 1 WHERE email = ?", (email,))
    if cur.rowcount == 0:
        raise NotFound("No account found for that email.")
    return User.from_row(find_by_email(conn, email))


def login(conn, email, password) -> User:
    row = find_by_email(conn, email)
    if row is None or not check_password_hash(row["password"], password or ""):
        raise InvalidCredentials()
    user = User.from_row(row)
    if not user.verified:
        raise NotVerified()
    return user


def create_admin(conn, fields) -> User:
    """Back-office path: a verified admin, no code involved."""
    data = validate_registration(fields)
    return _insert_user(conn, data, ROLE_ADMIN, verified=True)


def list_users(conn):
    return [User.from_row(r) for r in query(conn, "SELECT * FROM users ORDER BY id")]


def delete_user(conn, user_id):
    cur = execute(conn, "DELETE FROM users WHERE id = ?", (user_id,))
    if cur.rowcount == 0:
        raise NotFound("User not found")
