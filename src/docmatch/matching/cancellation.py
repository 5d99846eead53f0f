"""Cooperative cancellation for batch and combination searches."""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe cancellation flag passed explicitly to long-running calls.

    Callers check it at iteration boundaries (per transaction, per
    combination size) and stop early, returning what was computed so far.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.is_cancelled
