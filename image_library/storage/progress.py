"""Progress reporting for in-flight writes."""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional

from image_library.models import UploadProgress

ProgressCallback = Callable[[UploadProgress], None]


class ProgressReporter:
    """Turns byte counts from a writer thread into ``UploadProgress`` events.

    ``advance`` may be called from any thread (boto3 invokes its transfer
    callback from its own worker pool). Events are handed to the event loop
    with ``call_soon_threadsafe`` so a slow callback never stalls the write.
    Reported values never decrease, even across a retried write: s3transfer
    rewinds its callback with a negative amount when it retries a request,
    so the raw count is tracked apart from the reported high-water mark.
    """

    def __init__(self, total_bytes: int, callback: ProgressCallback, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.total_bytes = total_bytes
        self._callback = callback
        self._loop = loop or asyncio.get_running_loop()
        self._lock = threading.Lock()
        self._raw = 0
        self._transferred = 0
        self._finished = False

    @property
    def bytes_transferred(self) -> int:
        return self._transferred

    def start(self) -> None:
        self._callback(UploadProgress(bytes_transferred=0, total_bytes=self.total_bytes))

    def advance(self, nbytes: int) -> None:
        with self._lock:
            if self._finished:
                return
            self._raw += nbytes
            reported = min(self.total_bytes, max(self._transferred, self._raw))
            if reported == self._transferred:
                return
            self._transferred = reported
            event = UploadProgress(bytes_transferred=self._transferred, total_bytes=self.total_bytes)
        self._loop.call_soon_threadsafe(self._callback, event)

    def finish(self, success: bool) -> None:
        """Emit the terminal event. Must be called on the event loop thread."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self._transferred = self.total_bytes
        self._callback(
            UploadProgress(
                bytes_transferred=self.total_bytes,
                total_bytes=self.total_bytes,
                state="success" if success else "error",
            )
        )
