# core/cancel.py
import threading


class _Cancelled:
    """Outcome returned by a fetch whose token was cancelled. Not an error."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CANCELLED"


CANCELLED = _Cancelled()


def is_cancelled(result) -> bool:
    return result is CANCELLED


class CancellationToken:
    """
    Cooperative cancellation flag shared by every operation of one list view.
    Safe to read from worker threads.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
