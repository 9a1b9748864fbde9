# core/errors.py


class WishlistSearchError(Exception):
    """Base class for errors raised by the wish-list search engine."""


class TransportError(WishlistSearchError):
    """Network or HTTP failure talking to BOOTH."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class PersistenceError(WishlistSearchError):
    """The durable cache record could not be read or written."""


class MutationError(WishlistSearchError):
    """A list-membership change for a single item failed."""

    def __init__(self, item_id, message: str):
        super().__init__(f"item {item_id}: {message}")
        self.item_id = item_id
