"""
Shop Error Types

Every failure in the shop is scoped to the single action that triggered it.
Nothing here is fatal to the process; the HTTP layer maps each type onto a
status code and a generic user-facing message.

    ShopError
    ├── ValidationError    missing / invalid field, caught before any write
    ├── NotFoundError      unknown record id
    ├── StorageError       document store read/write failure (never retried)
    ├── PermissionDenied   role lacks the capability for the action
    ├── ConflictError      duplicate account, or the record changed under a transition
    └── QuoteRenderError   PDF library missing or failed to render
"""


class ShopError(Exception):
    """Base class for all shop errors."""

    status_code = 500


class ValidationError(ShopError):
    """A required field is missing or a value is out of range.

    Attributes:
        field: Name of the offending field, when known.
    """

    status_code = 422

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class NotFoundError(ShopError):
    """No record with the requested id exists in the collection."""

    status_code = 404

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection} record '{record_id}' not found")
        self.collection = collection
        self.record_id = record_id


class StorageError(ShopError):
    status_code = 503


class PermissionDenied(ShopError):
    status_code = 403


class QuoteRenderError(ShopError):
    status_code = 503


class ConflictError(ShopError):
    """Duplicate account, or a status transition lost a race for the record."""

    status_code = 409
