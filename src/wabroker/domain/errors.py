"""Domain error taxonomy.

Callers check errors by class, never by inspecting driver or provider codes.
The API layer maps each class to an HTTP status (see wabroker.api.errors).
"""


class BrokerError(Exception):
    """Base class for expected broker errors."""

    pass


class ValidationError(BrokerError):
    """Malformed caller input, rejected before any state is touched."""

    pass


class NotFoundError(BrokerError):
    """Referenced entity does not exist."""

    pass


class UnauthorizedError(BrokerError):
    """Caller could not be authenticated (boundary only)."""

    pass


class DuplicateError(BrokerError):
    """Uniqueness conflict reported by the store.

    Message creation treats this as an idempotent replay. Everywhere else it
    is a genuine conflict surfaced to the caller.
    """

    pass
