from __future__ import annotations

import threading
from collections.abc import Callable


class CancellationToken:
    """Cooperative, operation-wide cancellation signal.

    Listeners are called once, synchronously, from the thread that calls
    :meth:`cancel`. With async clients call ``cancel()`` from the event loop
    thread (or through ``anyio.from_thread.run_sync``); listeners cancel
    anyio scopes, which is not thread-safe.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register ``listener`` and return a function that unregisters it.

        If the token is already cancelled the listener runs immediately.
        """
        with self._lock:
            if not self._cancelled:
                self._listeners.append(listener)
                return lambda: self._remove(listener)
        listener()
        return lambda: None

    def _remove(self, listener: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass


__all__ = ["CancellationToken"]
