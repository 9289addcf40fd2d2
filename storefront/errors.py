"""Custom exceptions for the storefront service."""


class StorefrontError(Exception):
    """Base exception for all storefront domain errors."""

    pass


class NotFoundError(StorefrontError):
    """Raised when a record is absent by id or natural key."""

    def __init__(self, resource: str, key: str, value: object):
        self.resource = resource
        self.key = key
        self.value = value
        super().__init__(f"{resource} not found with {key}: {value}")


class ConflictError(StorefrontError):
    """Raised when a create or update would duplicate a unique key."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidArgumentError(StorefrontError):
    """Raised when a request breaks a business rule."""

    pass


class InsufficientStockError(InvalidArgumentError):
    """Raised when a conditional stock decrement affects no rows."""

    def __init__(self, product_id: str, requested: int, sku: str | None = None):
        self.product_id = product_id
        self.requested = requested
        label = sku or product_id
        super().__init__(f"Insufficient stock for product {label}: requested {requested}")


class UnauthenticatedError(StorefrontError):
    """Raised when the caller's identity cannot be established."""

    def __init__(self, reason: str = "Invalid credentials"):
        self.reason = reason
        super().__init__(reason)


class ForbiddenError(StorefrontError):
    """Raised when the caller lacks the role for an operation."""

    def __init__(self, reason: str = "Access denied"):
        self.reason = reason
        super().__init__(reason)


class ValidationFailedError(StorefrontError):
    """Raised with a mapping of field name to message."""

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = field_errors
        super().__init__("Input validation failed")
