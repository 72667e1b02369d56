"""Handlers registered for events, invoked when matching messages arrive."""

from __future__ import annotations

import threading
import uuid
from typing import Callable

from .metadata import Context, Message, context_from_message

Handler = Callable[[Context, bytes], object]


class Subscriber:
    """The handlers registered for one event."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[tuple[str, Handler]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def register(self, id: str, fn: Handler) -> None:
        """Add ``fn`` under the identifier ``id``."""
        with self._lock:
            self._handlers.append((id, fn))

    def unregister(self, id: str) -> bool:
        """Remove the handlers with ``id``; return whether none are left."""
        with self._lock:
            self._handlers = [h for h in self._handlers if h[0] != id]
            return not self._handlers

    def recv(self, ctx: Context, msg: Message) -> int:
        """Call every handler with ``ctx`` and the payload, each in its own thread.

        Returns the number of handlers started.
        """
        with self._lock:
            handlers = [fn for _, fn in self._handlers]
        for fn in handlers:
            threading.Thread(target=fn, args=(ctx, msg.payload), daemon=True).start()
        return len(handlers)


class Subscribers:
    """Subscribers keyed by event name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, Subscriber] = {}

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._subscribers

    def register(self, name: str, fn: Handler) -> str:
        """Add a handler for event ``name``; return its new unique id."""
        handler_id = str(uuid.uuid4())
        with self._lock:
            subscriber = self._subscribers.setdefault(name, Subscriber())
            subscriber.register(handler_id, fn)
        return handler_id

    def unregister(self, name: str, id: str) -> None:
        """Remove handler ``id`` from event ``name``, dropping the event once empty."""
        with self._lock:
            subscriber = self._subscribers.get(name)
            if subscriber is not None and subscriber.unregister(id):
                del self._subscribers[name]

    def recv(self, msg: Message) -> int:
        """Dispatch ``msg`` to the handlers of its event; return how many were started."""
        with self._lock:
            subscriber = self._subscribers.get(msg.name)
        if subscriber is None:
            return 0
        return subscriber.recv(context_from_message(msg), msg)