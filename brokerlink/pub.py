"""Publication of events, with optional delivery tracking and request/response."""

from __future__ import annotations

import queue
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from .callbacks import CallbackRegistry
from .metadata import Context, Message

_POLL_INTERVAL = 0.02


class ResponseError(Exception):
    """The response to a published event reported an error."""


def handle_response(res: Message) -> bytes:
    """Return the payload of ``res``, or raise the error it carries."""
    if res.error:
        raise ResponseError(res.error)
    return res.payload


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class Pub:
    """An event ready to be published.

    ``out`` is any object with a ``put`` method that accepts outgoing messages.
    ``ack_store`` is any object with a ``track`` method; it receives the message
    when ``ack`` is set.
    """

    name: str
    payload: bytes
    out: Any
    callbacks: CallbackRegistry = field(default_factory=CallbackRegistry)
    context: Context = field(default_factory=Context)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    brand: str = ""
    meta: dict[str, str] | None = None
    error: BaseException | None = None
    ack: bool = False
    ack_store: Any = None

    def build_message(self) -> Message:
        """Build the outgoing message, stamped with the current time in milliseconds."""
        return Message(
            id=self.id,
            name=self.name,
            brand=self.brand,
            metadata=self.meta if self.meta is not None else {},
            payload=self.payload,
            ack=self.ack,
            timestamp=_now_millis(),
            error=str(self.error) if self.error is not None else "",
        )

    def do(self) -> Message:
        """Send the event; track it for acknowledgment when ``ack`` is set."""
        msg = self.build_message()
        self.out.put(msg)
        if self.ack:
            if self.ack_store is None:
                raise RuntimeError("acknowledgment requested but no ack store is set")
            self.ack_store.track(msg)
        return msg

    def sub(self, event: str) -> bytes:
        """Send the event and wait for the ``event`` response with the same id.

        Returns the response payload. Raises ``ResponseError`` if the response
        carries an error, or the context's error if it ends first.
        """
        msg = self.build_message()
        responses: queue.Queue[Message] = queue.Queue()
        self.callbacks.register(event, msg.id, responses)
        try:
            self.out.put(msg)
            while True:
                try:
                    res = responses.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    if self.context.cancelled():
                        raise self.context.err from None
                    continue
                return handle_response(res)
        finally:
            self.callbacks.unregister(event, msg.id)