"""
Application configuration, loaded once at startup from the environment.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name, default="0"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me-please")

    DATABASE = os.getenv("DATABASE", os.path.join("data", "supermarket.db"))

    # "session" keeps the cart on the signed cookie, "database" in the cart table
    CART_BACKEND = os.getenv("CART_BACKEND", "session")

    OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "180"))
    DECREMENT_STOCK_ON_CHECKOUT = _flag("DECREMENT_STOCK_ON_CHECKOUT")

    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _flag("MAIL_USE_TLS", "1")
    MAIL_USE_SSL = _flag("MAIL_USE_SSL")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@supermarket.local")

    # product images; defaults to the package static/images folder
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER")
    ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
    MAX_CONTENT_LENGTH = 5 * 1024 * 1024

    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
