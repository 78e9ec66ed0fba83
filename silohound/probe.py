from __future__ import annotations

import time
from enum import Enum
from threading import Event, Thread
from typing import Any, Iterable

import docker


class ReadinessError(Exception):
    pass


class ReadinessTimeout(ReadinessError):
    pass


class ReadinessCancelled(ReadinessError):
    pass


class Readiness(str, Enum):
    MARKER = "marker"
    # The log stream closed (process exited) before the marker was seen.
    STREAM_ENDED = "stream_ended"


class MarkerScanner:
    """Substring search over a byte stream delivered in arbitrary chunks.

    The last ``len(marker) - 1`` bytes of each chunk are carried over and
    scanned together with the next one, so a marker split across a chunk
    boundary is still found.
    """

    def __init__(self, marker: str | bytes):
        self.marker = marker.encode("utf-8") if isinstance(marker, str) else marker
        if not self.marker:
            raise ValueError("marker must not be empty")
        self._keep = len(self.marker) - 1
        self._tail = b""

    def feed(self, chunk: bytes) -> bool:
        window = self._tail + chunk
        if self.marker in window:
            return True
        self._tail = window[-self._keep:] if self._keep else b""
        return False


def _close(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is not None:
        close()


class _Watchdog(Thread):
    """Closes the log stream once the deadline passes or ``cancel`` is set."""

    def __init__(self, stream: Any, timeout_s: float | None, cancel: Event | None, poll_s: float = 0.05):
        super().__init__(daemon=True)
        self.stream = stream
        self.timeout_s = timeout_s
        self.cancel = cancel
        self.poll_s = poll_s
        self.reason: str | None = None  # timeout|cancelled
        self._done = Event()

    def run(self) -> None:
        deadline = None if self.timeout_s is None else time.monotonic() + self.timeout_s
        while not self._done.wait(self.poll_s):
            if self.cancel is not None and self.cancel.is_set():
                self.reason = "cancelled"
            elif deadline is not None and time.monotonic() >= deadline:
                self.reason = "timeout"
            else:
                continue
            _close(self.stream)
            return

    def finish(self) -> None:
        self._done.set()
        self.join()


def _chunks(stream: Iterable[bytes], chunk_size: int) -> Iterable[bytes]:
    for frame in stream:
        if isinstance(frame, str):
            frame = frame.encode("utf-8")
        for i in range(0, len(frame), chunk_size):
            yield frame[i:i + chunk_size]


def _raise_for_watchdog(watchdog: _Watchdog | None, container_id: str, timeout_s: float | None) -> None:
    if watchdog is None or watchdog.reason is None:
        return
    if watchdog.reason == "cancelled":
        raise ReadinessCancelled(f"Readiness wait for {container_id[:12]} was cancelled.")
    raise ReadinessTimeout(f"Container {container_id[:12]} did not become ready within {timeout_s}s.")


def wait_until_ready(
    client: docker.DockerClient,
    container_id: str,
    marker: str,
    timeout_s: float | None = None,
    cancel: Event | None = None,
    chunk_size: int = 1024,
    eof_is_ready: bool = True,
) -> Readiness:
    """Block until ``marker`` appears in the container's combined log output.

    Returns ``Readiness.MARKER`` on a match. If the stream ends first, returns
    ``Readiness.STREAM_ENDED`` when ``eof_is_ready`` is set and raises
    ``ReadinessError`` otherwise. Read errors raise ``ReadinessError``; the
    deadline and the cancel event raise its ``ReadinessTimeout`` and
    ``ReadinessCancelled`` subclasses.
    """
    if cancel is not None and cancel.is_set():
        raise ReadinessCancelled(f"Readiness wait for {container_id[:12]} was cancelled.")

    scanner = MarkerScanner(marker)
    container = client.containers.get(container_id)
    stream = container.logs(stdout=True, stderr=True, stream=True, follow=True)

    watchdog = None
    if timeout_s is not None or cancel is not None:
        watchdog = _Watchdog(stream, timeout_s, cancel)
        watchdog.start()

    found = False
    try:
        for chunk in _chunks(stream, max(1, chunk_size)):
            if scanner.feed(chunk):
                found = True
                break
    except Exception as e:
        if watchdog is not None:
            watchdog.finish()
        _raise_for_watchdog(watchdog, container_id, timeout_s)
        raise ReadinessError(f"Reading logs of {container_id[:12]} failed: {type(e).__name__}: {e}") from e
    finally:
        if watchdog is not None:
            watchdog.finish()
        if watchdog is None or watchdog.reason is None:
            _close(stream)

    if found:
        return Readiness.MARKER

    _raise_for_watchdog(watchdog, container_id, timeout_s)
    if not eof_is_ready:
        raise ReadinessError(f"Log stream of {container_id[:12]} ended before '{marker}' was seen.")
    return Readiness.STREAM_ENDED
