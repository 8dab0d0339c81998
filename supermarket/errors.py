"""Exceptions raised by the storefront core.

Every error carries a human-readable message that can be flashed as-is, and
an HTTP status used when a client asks for a JSON error body.
"""


class ShopError(Exception):
    status_code = 400
    default_message = "We couldn't complete your request."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(ShopError):
    default_message = "Please check the submitted fields."


class NotFound(ShopError):
    status_code = 404
    default_message = "Not found."


class EmptyCart(ShopError):
    default_message = "Your cart is empty."


class InvalidCartData(ShopError):
    default_message = "Invalid cart data. Please try again."


class InsufficientStock(ShopError):
    status_code = 409
    default_message = "Not enough stock available."


class AccessDenied(ShopError):
    status_code = 403
    default_message = "Access denied."


class EmailTaken(ShopError):
    status_code = 409
    default_message = "That email is already registered."


class OTPExpired(ShopError):
    default_message = "Your code has expired. Please request a new one."


class OTPMismatch(ShopError):
    default_message = "Invalid code. Please try again."


class InvalidCredentials(ShopError):
    status_code = 401
    default_message = "Invalid email or password."


class NotVerified(ShopError):
    status_code = 403
    default_message = "Please verify your email before logging in."


class CheckoutFailed(ShopError):
    status_code = 500
    default_message = "Failed to create order. Please try again or contact support."


class PersistenceFailure(ShopError):
    status_code = 500
    default_message = "Database error."


class DispatchFailure(ShopError):
    status_code = 502
    default_message = "We couldn't send the email. Please try again."
