"""Tracking of messages that await acknowledgment, with automatic resend."""

from __future__ import annotations

import threading
from typing import Any

from .metadata import Message

DEFAULT_TIMEOUT = 5.0


class _Tracker:
    """Resends one message every ``timeout`` seconds until stopped."""

    def __init__(self, msg: Message, timeout: float, resend) -> None:
        self.msg = msg
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(timeout, resend), daemon=True
        )
        self._thread.start()

    def _run(self, timeout: float, resend) -> None:
        while not self._stop.wait(timeout):
            resend(self.msg)

    def stop(self) -> None:
        self._stop.set()


class AckStore:
    """Resends tracked messages to ``out`` until each one is approved.

    ``out`` is any object with a ``put`` method, such as ``queue.Queue``.
    A ``timeout`` of ``None`` or ``0`` means the default of five seconds.
    """

    def __init__(self, out: Any, timeout: float | None = None) -> None:
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must not be negative")
        self._out = out
        self.timeout = timeout if timeout else DEFAULT_TIMEOUT
        self._lock = threading.Lock()
        self._acks: dict[str, _Tracker] = {}
        self._closed = False

    def __enter__(self) -> AckStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _resend(self, msg: Message) -> None:
        # Hand off in a thread so a full output queue never stalls the timer.
        threading.Thread(target=self._out.put, args=(msg,), daemon=True).start()

    def track(self, msg: Message) -> None:
        """Start resending ``msg`` until an acknowledgment for its id arrives."""
        tracker = _Tracker(msg, self.timeout, self._resend)
        with self._lock:
            if self._closed:
                tracker.stop()
                raise RuntimeError("ack store is closed")
            previous = self._acks.get(msg.id)
            self._acks[msg.id] = tracker
        if previous is not None:
            previous.stop()

    def approve(self, msg: Message) -> bool:
        """Stop resending the message with ``msg``'s id; report whether it was tracked."""
        with self._lock:
            tracker = self._acks.pop(msg.id, None)
        if tracker is None:
            return False
        tracker.stop()
        return True

    def pending(self) -> list[str]:
        """Ids of messages still awaiting acknowledgment, oldest first."""
        with self._lock:
            return list(self._acks)

    def close(self) -> None:
        """Stop every resend and refuse further tracking."""
        with self._lock:
            self._closed = True
            trackers = list(self._acks.values())
            self._acks.clear()
        for tracker in trackers:
            tracker.stop()