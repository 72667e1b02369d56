"""Registry of response queues keyed by event name and message id."""

from __future__ import annotations

import threading
from typing import Any

from .metadata import Message


def _key(event: str, id: str) -> str:
    return f"{event}:{id}"


class CallbackRegistry:
    """Delivers received messages to queues waiting for a particular response."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._callbacks: dict[str, Any] = {}

    def register(self, event: str, id: str, queue: Any) -> None:
        """Route messages named ``event`` with ``id`` into ``queue``."""
        with self._lock:
            self._callbacks[_key(event, id)] = queue

    def unregister(self, event: str, id: str) -> None:
        """Stop routing messages for ``event`` and ``id``."""
        with self._lock:
            self._callbacks.pop(_key(event, id), None)

    def recv(self, msg: Message) -> bool:
        """Hand ``msg`` to its registered queue without blocking; report whether one exists."""
        with self._lock:
            queue = self._callbacks.get(_key(msg.name, msg.id))
        if queue is None:
            return False
        threading.Thread(target=queue.put, args=(msg,), daemon=True).start()
        return True