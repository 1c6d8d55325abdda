"""Deadline and cancellation carried through one ingestion."""

from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import Cancelled


class IngestContext:
    """A deadline plus a cancellation flag, checked at I/O boundaries.

    ``timeout`` is in seconds from construction; ``None`` means no deadline.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, stage: str, module_path: str = "", version: str = "") -> None:
        """Raise :class:`Cancelled` if the caller gave up before *stage*."""
        if self.cancelled:
            raise Cancelled(f"cancelled before {stage}", module_path, version)
        if self.expired():
            raise Cancelled(f"deadline exceeded before {stage}", module_path, version)


def check(ctx: Optional[IngestContext], stage: str, module_path: str = "", version: str = "") -> None:
    if ctx is not None:
        ctx.check(stage, module_path, version)
