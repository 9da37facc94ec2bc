"""Detection of a readiness marker in a live output stream."""

from __future__ import annotations

import threading

READY_MARKER = b"mysqld: ready for connections"


class ReadinessWatcher:
    """
    Writable sink that fires once when *marker* appears in the written bytes.

    Chunks arrive from a drain thread while another thread blocks in
    :meth:`wait`.  The last ``len(marker) - 1`` bytes of each write are carried
    over, so a marker split across two reads is still found.

    Usage::

        watcher = ReadinessWatcher(READY_MARKER)
        # drain thread: watcher.write(chunk) ... watcher.close()
        if watcher.wait():
            ...
    """

    def __init__(self, marker: bytes = READY_MARKER) -> None:
        if not marker:
            raise ValueError("marker must not be empty")
        self.marker = bytes(marker)
        self._tail = b""
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._done = threading.Event()

    @property
    def ready(self) -> bool:
        """Whether the marker has been observed."""
        return self._ready.is_set()

    def write(self, data: bytes) -> int:
        """Scan *data* for the marker. Always reports the full chunk as consumed."""
        with self._lock:
            if self._ready.is_set():
                return len(data)
            window = self._tail + bytes(data)
            if self.marker in window:
                self._tail = b""
                self._ready.set()
                self._done.set()
                return len(data)
            keep = len(self.marker) - 1
            self._tail = window[-keep:] if keep else b""
        return len(data)

    def close(self) -> None:
        """Mark the stream as ended so waiters stop blocking."""
        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until the marker is seen or the stream is closed.

        Without a timeout this blocks indefinitely; deadlines are imposed by
        the caller.

        Returns:
            True if the marker was observed.
        """
        self._done.wait(timeout)
        return self._ready.is_set()
