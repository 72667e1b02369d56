"""Broker shard endpoints: addressing, authentication metadata and reconnect policy."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from .metadata import Message
from .token import Token

ACK_EVENT = "_.ack"
HELLO_EVENT = "_.hello"
MAX_RECONNECT_DELAY = 8


class StatusCode(enum.IntEnum):
    """Status codes reported by the broker transport."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class BrokerError(Exception):
    """An error reported while talking to a broker shard."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = StatusCode(code)
        self.message = message

    def __str__(self) -> str:
        return self.message


class FatalBrokerError(BrokerError):
    """An error after which reconnecting cannot help."""


_FATAL = {
    StatusCode.INVALID_ARGUMENT: "Invalid argument",
    StatusCode.UNAUTHENTICATED: "Unauthenticated",
}


def _now_millis() -> int:
    return datetime.now(timezone.utc).timestamp().__int__() * 1000 + (
        datetime.now(timezone.utc).microsecond // 1000
    )


def _rfc3339_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class ShardOptions:
    """Configuration for one broker shard.

    ``connector`` runs one connection session for a shard; it is started when
    the shard is added to a store and again after each recoverable error.
    """

    host: str
    protocol: str = "https"
    http: str = ""
    grpc: str = ""
    secret: str = ""
    only_root: bool = False
    brand: str = ""
    module: str = ""
    subs: Sequence[str] | None = None
    pubs: Sequence[str] | None = None
    out: Any = None
    incoming: Any = None
    connector: Callable[[Shard], object] | None = None


class Shard:
    """One broker endpoint together with its reconnection state."""

    def __init__(self, options: ShardOptions) -> None:
        self.options = options
        self.attempt = 0
        self._lock = threading.Lock()

    @property
    def host(self) -> str:
        return self.options.host

    def cert_url(self) -> str:
        """URL from which the broker's CA certificate is fetched."""
        o = self.options
        return f"{o.protocol}://{o.host}:{o.http}/ca"

    def broker_address(self) -> str:
        """Address of the broker's streaming endpoint."""
        return f"{self.options.host}:{self.options.grpc}"

    def auth_metadata(self, timestamp: str | None = None) -> dict[str, str]:
        """Headers that authenticate this module to the broker."""
        o = self.options
        if timestamp is None:
            timestamp = _rfc3339_now()
        token = Token(
            brand=o.brand,
            module=o.module,
            subs=None if o.subs is None else list(o.subs),
            pubs=None if o.pubs is None else list(o.pubs),
            timestamp=timestamp,
        )
        signature = token.generate_hmac(o.secret)
        return {
            "authorization": f"HMAC-SHA256 {o.module}:{signature}",
            "x-brand": o.brand,
            "x-subs": ",".join(sorted(o.subs or ())),
            "x-pubs": ",".join(sorted(o.pubs or ())),
            "x-only-root": "true" if o.only_root else "false",
            "x-timestamp": timestamp,
        }

    def reset_attempts(self) -> None:
        """Forget earlier failures, as after the broker's greeting."""
        with self._lock:
            self.attempt = 0

    def next_delay(self) -> int:
        """Seconds to wait before the next reconnect; advances the backoff."""
        with self._lock:
            delay = self.attempt
            if self.attempt == 0:
                self.attempt = 1
            else:
                self.attempt = min(self.attempt * 2, MAX_RECONNECT_DELAY)
        return delay

    def _describe(self) -> str:
        o = self.options
        if o.brand:
            return f"Module: {o.module}, brand: {o.brand}"
        return f"Module: {o.module}"

    def handle_error(self, error: BaseException) -> int:
        """Deal with a connection error.

        Raises ``FatalBrokerError`` for invalid arguments and failed
        authentication. Otherwise reports the error, schedules a reconnect
        through the connector if there is one, and returns the delay in seconds.
        """
        code = error.code if isinstance(error, BrokerError) else StatusCode.UNKNOWN
        if code in _FATAL:
            raise FatalBrokerError(code, f"{_FATAL[code]}: {error}") from error
        print(f"Connect error: {error}. {self._describe()} ")
        if self.attempt > 0:
            print(f"Reconnect after {self.attempt} seconds to: {self.options.host}")
        delay = self.next_delay()
        connector = self.options.connector
        if connector is not None:
            timer = threading.Timer(delay, connector, args=(self,))
            timer.daemon = True
            timer.start()
        return delay

    def ack_for(self, msg: Message) -> Message | None:
        """The acknowledgment to send back for a received message, if it wants one."""
        if msg.name == HELLO_EVENT or not msg.ack:
            return None
        return Message(id=msg.id, name=ACK_EVENT, timestamp=_now_millis())


class ShardStore:
    """Shards keyed by host."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._shards: dict[str, Shard] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._shards)

    def add(self, options: ShardOptions) -> Shard:
        """Create a shard, store it under its host and start its connector."""
        shard = Shard(options)
        with self._lock:
            self._shards[options.host] = shard
        if options.connector is not None:
            threading.Thread(
                target=options.connector, args=(shard,), daemon=True
            ).start()
        return shard

    def get(self, host: str) -> Shard | None:
        """The shard for ``host``, or None."""
        with self._lock:
            return self._shards.get(host)

    def hosts(self) -> list[str]:
        """Hosts of the stored shards, in the order they were added."""
        with self._lock:
            return list(self._shards)


def parse_hosts(host: str) -> list[tuple[str, str, str, str]]:
    """Parse ``"protocol:host::http:grpc, ..."`` into (protocol, host, http, grpc) tuples.

    Raises ``ValueError`` on an empty or malformed entry.
    """
    shards = []
    for entry in host.split(","):
        entry = entry.strip()
        if not entry:
            raise ValueError("empty shard string")
        parts = entry.split("::")
        if len(parts) != 2:
            raise ValueError(f"invalid shard format: {entry}")
        urls, ports = parts
        url_parts = urls.split(":")
        if len(url_parts) != 2:
            raise ValueError(f"invalid url format: {urls}")
        port_parts = ports.split(":")
        if len(port_parts) != 2:
            raise ValueError(f"invalid ports format: {ports}")
        shards.append((url_parts[0], url_parts[1], port_parts[0], port_parts[1]))
    return shards