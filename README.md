# brokerlink

`brokerlink` is the client core for a publish/subscribe system with one or
more broker shards. It handles everything a broker client does apart from the
network connection itself:

- **Publishing** events with a brand, custom metadata, error details and an
  optional delivery guarantee (`Pub.do`, `Pub.sub`).
- **Subscribing** to events with handler functions. Each handler runs in its
  own thread (`Subscribers`, `Client.sub`).
- **Request/response.** A queue is registered under the key `"event:id"`, and
  `Pub.sub` waits until a reply arrives or its context ends
  (`CallbackRegistry`).
- **Acknowledgment tracking.** A message sent with the ack flag is put on the
  outgoing queue again every timeout period until an `_.ack` message for its
  id arrives (`AckStore`). The default timeout is 5 seconds.
- **Shard configuration and authentication.** `parse_hosts` parses the host
  string. `Shard.auth_metadata` builds headers signed with HMAC-SHA256.
  `Shard.next_delay` gives reconnect delays of 0, 1, 2, 4, 8, 8, … seconds.

It has no third-party dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Host strings

A client can use several shards. List them in `Options.host`, separated by
commas. Each shard has the form

```
protocol:host::http_port:grpc_port
```

For example: `https:broker.example.com::8080:9090, https:backup.example.com::8080:9090`.
`parse_hosts` turns this into `(protocol, host, http, grpc)` tuples. An empty
entry or a malformed entry raises `ValueError`, and `Client` raises it too.

## Usage

```python
from brokerlink.client import Client, Options
from brokerlink.metadata import Context

client = Client(Options(
    host="https:broker.example.com::8080:9090",
    brand="acme",
    module="billing",
    secret="secret",
    subs=["invoice.created"],
    pubs=["invoice.paid"],
))

ctx = Context()

# Subscribe. The handler stays registered until ctx is cancelled.
def on_invoice(event_ctx, payload):
    print("got", payload, "from brand", client.brand(event_ctx))

client.sub(ctx, "invoice.created", on_invoice)

# Publish with a delivery guarantee and a brand.
ctx = client.with_brand(client.ack(ctx), "acme")
client.pub(ctx, "invoice.paid", b'{"id": 42}').do()

# Request/response: publish and wait for a reply on another event.
reply = client.pub(Context().with_timeout(2.0), "invoice.lookup", b"42").sub("invoice.lookup.reply")

client.close()
```

`Client` also works as a context manager, and leaving the `with` block calls
`close()`. `close()` stops every pending resend and stops the thread that
processes incoming messages.

`Pub.sub` raises `ResponseError` when the reply carries an error string. When
the context ends first, it raises the context's error: `TimeoutError` after
`with_timeout` runs out, or `concurrent.futures.CancelledError` after `cancel()`.

### Context metadata

`Client.ack`, `Client.with_brand`, `Client.with_metadata` and
`Client.with_error` each return a new `Context` that carries an updated
`EventMeta`. `Client.pub` reads that metadata to fill in the outgoing
`Message`. If the context does not supply an id, a fresh UUID is used.

Handlers get a context built from the incoming message by
`context_from_message`. This context holds the sender's brand, name, id,
metadata, ack flag and timestamp.

### Acknowledgments

```python
import queue
from brokerlink.ack import AckStore
from brokerlink.metadata import Message

out = queue.Queue()
with AckStore(out, timeout=0.5) as store:
    store.track(Message(id="m1", name="job"))
    ...                      # "m1" is put on `out` every 0.5 s
    store.approve(Message(id="m1"))
```

`pending()` lists the ids that have not been acknowledged. A timeout of `None`
or `0` means 5 seconds, and a negative timeout raises `ValueError`. Calling
`track` after `close()` raises `RuntimeError`.

### Authentication tokens

```python
from brokerlink.token import Token

signature = Token(
    brand="acme",
    module="billing",
    subs=["b", "a"],
    pubs=["c"],
    timestamp="2024-01-01T00:00:00Z",
).generate_hmac("secret")
```

Before signing, the subscription and publication lists are sorted and the JSON
is written with sorted keys and no spaces. The same token therefore always
gives the same hex signature. `Shard.auth_metadata(timestamp)` wraps this and
returns the `authorization`, `x-brand`, `x-subs`, `x-pubs`, `x-only-root` and
`x-timestamp` headers. If no timestamp is given, the current UTC time in
RFC 3339 form is used.

### Errors from shards

`Shard.handle_error` treats the status codes `StatusCode.INVALID_ARGUMENT` and
`StatusCode.UNAUTHENTICATED` as fatal and raises `FatalBrokerError`. It handles
any other error as follows:

- it prints the error;
- it advances the backoff;
- if a connector is configured, it schedules the connector to run again after
  the delay;
- it returns the delay in seconds.

An exception that is not a `BrokerError` counts as `StatusCode.UNKNOWN`.

## What this package does not do

`brokerlink` does not open network connections. It does not fetch the broker's
CA certificate, set up TLS or run a streaming session. `Shard.cert_url()` and
`Shard.broker_address()` only return the addresses such a session would use.

To talk to a real broker, pass a `connector` in `Options` (or `ShardOptions`).
The connector is a callable that takes a `Shard` and runs one session. It is
started when the shard is added, and again after each recoverable error sent
to `Shard.handle_error`. The session should:

- send the messages it takes from `client.out`;
- put received messages on `client.incoming`;
- call `shard.reset_attempts()` when the broker's `_.hello` greeting arrives;
- send back the message returned by `shard.ack_for(msg)` for each received
  message that asks for an acknowledgment.

Without a connector, shards are only recorded in `client.shards`, and messages
stay on `client.out`.