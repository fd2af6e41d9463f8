from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from solvegate.errors import AdmissionRejected, RejectReason, SolveCancelled
from solvegate.process.cancel import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 2
DEFAULT_MAX_QUEUE_DEPTH = 8
DEFAULT_QUEUE_WAIT_S = 5.0
CANCEL_POLL_INTERVAL_S = 0.05


@dataclass
class Slot:
    slot_id: int
    acquired_at: float
    released: bool = False


class AdmissionController:
    """Bounded pool of solver slots with a FIFO wait queue.

    ``acquire`` grants a slot immediately when one is free and nobody is
    queued ahead; otherwise the caller joins the queue and waits up to
    ``wait_s``. A full queue rejects new callers straight away.
    """

    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_queue_depth: int = DEFAULT_MAX_QUEUE_DEPTH,
        queue_wait_s: float = DEFAULT_QUEUE_WAIT_S,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_queue_depth < 0:
            raise ValueError("max_queue_depth must not be negative")
        self.max_concurrency = max_concurrency
        self.max_queue_depth = max_queue_depth
        self.queue_wait_s = queue_wait_s
        self._cond = threading.Condition()
        self._in_use = 0
        self._peak_in_use = 0
        self._waiters: deque[object] = deque()
        self._ids = itertools.count(1)

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    @property
    def queued(self) -> int:
        with self._cond:
            return len(self._waiters)

    @property
    def peak_in_use(self) -> int:
        with self._cond:
            return self._peak_in_use

    def _grant(self) -> Slot:
        self._in_use += 1
        self._peak_in_use = max(self._peak_in_use, self._in_use)
        return Slot(slot_id=next(self._ids), acquired_at=time.monotonic())

    def acquire(self, wait_s: float | None = None, cancel: CancelToken | None = None) -> Slot:
        wait_s = self.queue_wait_s if wait_s is None else wait_s
        with self._cond:
            if not self._waiters and self._in_use < self.max_concurrency:
                return self._grant()
            if len(self._waiters) >= self.max_queue_depth:
                logger.warning(
                    f"Admission queue full ({len(self._waiters)} waiting, {self._in_use} running)"
                )
                raise AdmissionRejected(
                    RejectReason.OVERLOADED,
                    f"solver queue is full ({self.max_queue_depth} waiting)",
                )

            ticket = object()
            self._waiters.append(ticket)
            deadline = time.monotonic() + wait_s
            try:
                while not (self._waiters[0] is ticket and self._in_use < self.max_concurrency):
                    if cancel is not None and cancel.cancelled:
                        raise SolveCancelled("request cancelled while waiting for a solver slot")
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise AdmissionRejected(
                            RejectReason.TIMEOUT,
                            f"no solver slot became free within {wait_s * 1000:.0f}ms",
                        )
                    if cancel is not None:
                        remaining = min(remaining, CANCEL_POLL_INTERVAL_S)
                    self._cond.wait(remaining)
                self._waiters.popleft()
                slot = self._grant()
                # The next waiter may also fit if more than one slot is free.
                self._cond.notify_all()
                return slot
            finally:
                if ticket in self._waiters:
                    self._waiters.remove(ticket)
                    self._cond.notify_all()

    def release(self, slot: Slot) -> None:
        with self._cond:
            if slot.released:
                raise ValueError(f"slot {slot.slot_id} already released")
            if self._in_use <= 0:
                raise ValueError("release without a matching acquire")
            slot.released = True
            self._in_use -= 1
            self._cond.notify_all()

    @contextmanager
    def slot(self, wait_s: float | None = None, cancel: CancelToken | None = None) -> Iterator[Slot]:
        granted = self.acquire(wait_s=wait_s, cancel=cancel)
        try:
            yield granted
        finally:
            self.release(granted)
