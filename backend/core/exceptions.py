"""Domain errors raised by the store and service layers.

Routes translate these into HTTP responses; nothing below the route layer
knows about status codes.
"""


class MarketplaceError(Exception):
    """Base class for errors the API reports back to the caller."""


class StoreError(MarketplaceError):
    """The database rejected or failed an operation."""


class NotFoundError(MarketplaceError):
    pass


class PermissionDeniedError(MarketplaceError):
    pass


class QuoteValidationError(MarketplaceError, ValueError):
    pass


class InvalidTransitionError(MarketplaceError):
    pass


class DuplicateSubmissionError(MarketplaceError):
    pass
