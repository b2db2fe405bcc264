"""Error kinds raised by the finance services.

All of them derive from ``ValueError`` so callers that only care about
"the request was refused" can keep catching that.
"""


class FinanceError(ValueError):
    """Base class for refused operations."""


class ValidationError(FinanceError):
    """A field is malformed or out of range."""


class NotFoundError(FinanceError):
    """A referenced entity is absent, soft-deleted or inactive."""


class ConflictError(FinanceError):
    """Uniqueness, duplicate association, cycle, or blocked delete."""


class IntegrityMismatchError(FinanceError):
    """Cross-entity mismatch such as category type vs. transaction type."""


class StoreError(FinanceError):
    """The record store failed; the message carries the operation."""
