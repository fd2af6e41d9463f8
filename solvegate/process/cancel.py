from __future__ import annotations

import threading


class CancelToken:
    """Thread-safe cancellation flag shared between a caller and a running solve.

    The caller (for example a request handler noticing a client disconnect)
    calls ``cancel()``; the admission queue and the process runner poll
    ``cancelled`` and stop their work.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)
