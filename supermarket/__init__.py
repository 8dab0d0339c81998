"""Supermarket storefront: catalog, cart, checkout, orders and email-verified accounts."""

__version__ = "0.1.0"
