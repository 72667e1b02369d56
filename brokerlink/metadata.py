"""Messages, event metadata and the cancellable context that carries it."""

from __future__ import annotations

import threading
from concurrent.futures import CancelledError
from dataclasses import dataclass, field


@dataclass
class Message:
    """A message exchanged with the broker."""

    id: str = ""
    name: str = ""
    brand: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    payload: bytes = b""
    ack: bool = False
    timestamp: int = 0
    error: str = ""


@dataclass
class EventMeta:
    """Supplementary information attached to an event."""

    brand: str = ""
    name: str = ""
    id: str = ""
    meta: dict[str, str] | None = None
    error: BaseException | None = None
    ack: bool = False
    timestamp: int = 0


class _CancelState:
    """Shared cancellation state; cancelling a parent cancels its children."""

    def __init__(self, parent: _CancelState | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[_CancelState] = []
        self._timer: threading.Timer | None = None
        self.error: BaseException | None = None
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: _CancelState) -> None:
        with self._lock:
            error = self.error
            if error is None:
                self._children.append(child)
        if error is not None:
            child.cancel(error)

    def start_timer(self, seconds: float) -> None:
        timer = threading.Timer(
            seconds, self.cancel, args=(TimeoutError("context deadline exceeded"),)
        )
        timer.daemon = True
        with self._lock:
            if self.error is not None:
                return
            self._timer = timer
        timer.start()

    def cancel(self, error: BaseException) -> None:
        with self._lock:
            if self.error is not None:
                return
            self.error = error
            children, self._children = self._children, []
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._event.set()
        for child in children:
            child.cancel(error)

    def wait(self, timeout: float | None) -> bool:
        return self._event.wait(timeout)

    def is_set(self) -> bool:
        return self._event.is_set()


class Context:
    """A cancellable carrier of event metadata."""

    def __init__(self) -> None:
        self._state = _CancelState()
        self._meta: EventMeta | None = None

    @classmethod
    def _make(cls, state: _CancelState, meta: EventMeta | None) -> Context:
        ctx = cls.__new__(cls)
        ctx._state = state
        ctx._meta = meta
        return ctx

    @property
    def meta(self) -> EventMeta | None:
        """The metadata attached to this context, if any."""
        return self._meta

    @property
    def err(self) -> BaseException | None:
        """Why the context ended, or None while it is still live."""
        return self._state.error

    def with_meta(self, meta: EventMeta | None) -> Context:
        """Return a context carrying ``meta``; the same context if ``meta`` is None."""
        if meta is None:
            return self
        return Context._make(self._state, meta)

    def with_timeout(self, seconds: float) -> Context:
        """Return a child context that ends after ``seconds`` or with this one."""
        state = _CancelState(parent=self._state)
        state.start_timer(seconds)
        return Context._make(state, self._meta)

    def cancel(self) -> None:
        """End this context and every context derived from it."""
        self._state.cancel(CancelledError("context canceled"))

    def cancelled(self) -> bool:
        """Whether the context has ended."""
        return self._state.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context ends; return whether it did within ``timeout``."""
        return self._state.wait(timeout)


def meta_from_context(ctx: Context | None) -> EventMeta:
    """Return the metadata stored in ``ctx``, or a fresh empty one."""
    if ctx is None or ctx.meta is None:
        return EventMeta()
    return ctx.meta


def context_from_message(msg: Message) -> Context:
    """Build a fresh context whose metadata is taken from a received message."""
    return Context().with_meta(
        EventMeta(
            brand=msg.brand,
            name=msg.name,
            id=msg.id,
            meta=msg.metadata,
            ack=msg.ack,
            timestamp=msg.timestamp,
        )
    )