"""Client that publishes and subscribes to events through broker shards."""

from __future__ import annotations

import dataclasses
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Sequence

from .ack import AckStore
from .callbacks import CallbackRegistry
from .metadata import Context, Message, meta_from_context
from .pub import Pub
from .shard import ACK_EVENT, Shard, ShardOptions, ShardStore, parse_hosts
from .subscribers import Handler, Subscribers

_STOP = object()


@dataclass
class Options:
    """Configuration of a client.

    ``host`` lists shard endpoints as ``"protocol:host::http:grpc"``, separated
    by commas. An ``ack_timeout`` of zero means the default of five seconds.
    ``connector`` runs one connection session for a shard; without it shards
    are only recorded.
    """

    host: str
    brand: str = ""
    module: str = ""
    secret: str = ""
    subs: Sequence[str] | None = None
    pubs: Sequence[str] | None = None
    ack_timeout: float = 0.0
    only_root: bool = False
    connector: Callable[[Shard], object] | None = None


class Client:
    """Publishes events, dispatches received ones and resends unacknowledged ones."""

    def __init__(self, options: Options) -> None:
        shard_specs = parse_hosts(options.host)
        self.options = options
        self.out: queue.Queue[Message] = queue.Queue()
        self.incoming: queue.Queue = queue.Queue()
        self.subscribers = Subscribers()
        self.callbacks = CallbackRegistry()
        self.shards = ShardStore()
        self.ack_store = AckStore(self.out, options.ack_timeout or None)
        self._worker = threading.Thread(target=self._process_incoming, daemon=True)
        self._worker.start()
        for protocol, host, http, grpc in shard_specs:
            self.shards.add(
                ShardOptions(
                    host=host,
                    protocol=protocol,
                    http=http,
                    grpc=grpc,
                    secret=options.secret,
                    only_root=options.only_root,
                    brand=options.brand,
                    module=options.module,
                    subs=None if options.subs is None else list(options.subs),
                    pubs=None if options.pubs is None else list(options.pubs),
                    out=self.out,
                    incoming=self.incoming,
                    connector=options.connector,
                )
            )

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _process_incoming(self) -> None:
        while True:
            msg = self.incoming.get()
            if msg is _STOP:
                return
            self.handle_incoming(msg)

    def handle_incoming(self, msg: Message) -> None:
        """Approve acknowledgments; deliver anything else to subscribers and callbacks."""
        if msg.name == ACK_EVENT:
            self.ack_store.approve(msg)
        else:
            self.subscribers.recv(msg)
            self.callbacks.recv(msg)

    @staticmethod
    def _derive(ctx: Context | None, **changes) -> Context:
        base = ctx if ctx is not None else Context()
        meta = dataclasses.replace(meta_from_context(base), **changes)
        return base.with_meta(meta)

    def ack(self, ctx: Context | None) -> Context:
        """Return a context whose events require acknowledgment."""
        return self._derive(ctx, ack=True)

    def with_brand(self, ctx: Context | None, brand: str) -> Context:
        """Return a context whose events carry ``brand``."""
        return self._derive(ctx, brand=brand)

    def with_metadata(self, ctx: Context | None, data: dict[str, str] | None) -> Context:
        """Return a context whose events carry the key/value pairs in ``data``."""
        return self._derive(ctx, meta=data)

    def brand(self, ctx: Context | None) -> str:
        """The brand recorded in ``ctx``."""
        return meta_from_context(ctx).brand

    def with_error(self, ctx: Context | None, err: BaseException | None) -> Context:
        """Return a context whose events carry ``err``."""
        return self._derive(ctx, error=err)

    def pub(self, ctx: Context | None, event: str, payload: bytes) -> Pub:
        """Prepare the publication of ``event`` using the metadata found in ``ctx``."""
        context = ctx if ctx is not None else Context()
        meta = meta_from_context(context)
        return Pub(
            name=event,
            payload=payload,
            out=self.out,
            callbacks=self.callbacks,
            context=context,
            id=meta.id or str(uuid.uuid4()),
            brand=meta.brand,
            meta=meta.meta,
            error=meta.error,
            ack=meta.ack,
            ack_store=self.ack_store,
        )

    def sub(self, ctx: Context, event: str, fn: Handler) -> str:
        """Call ``fn`` for each ``event`` until ``ctx`` ends; return the handler id."""
        handler_id = self.subscribers.register(event, fn)

        def _unregister_when_done() -> None:
            ctx.wait()
            self.subscribers.unregister(event, handler_id)

        threading.Thread(target=_unregister_when_done, daemon=True).start()
        return handler_id

    def close(self) -> None:
        """Stop processing incoming messages and stop every pending resend."""
        self.ack_store.close()
        if self._worker.is_alive():
            self.incoming.put(_STOP)
            self._worker.join(timeout=1.0)