"""
Store errors

Raised by the order, review and catalog helpers and turned into JSON
responses by the exception handler registered in main.py.
"""


class StoreError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class NotFound(StoreError):
    """A referenced user, product, order or payment bill does not exist."""

    status_code = 404


class InvalidRequest(StoreError):
    """Malformed id or an empty required collection."""

    status_code = 400


class Conflict(StoreError):
    """Duplicate review or not enough stock to fill an order."""

    status_code = 409
