import queue
import threading
import time

import pytest

from brokerlink.client import Client, Options
from brokerlink.metadata import Context, EventMeta, Message
from brokerlink.pub import ResponseError


def make_client(**kwargs):
    defaults = dict(
        host="https:broker.example.com::8080:9090",
        brand="testBrand",
        module="testModule",
        secret="secret",
        subs=["event1"],
        pubs=["event2"],
        ack_timeout=0.05,
    )
    defaults.update(kwargs)
    return Client(Options(**defaults))


@pytest.fixture
def client():
    c = make_client()
    yield c
    c.close()


def test_pub_do_sends_message(client):
    client.pub(Context(), "eventTest", b"payload").do()
    msg = client.out.get(timeout=1)
    assert msg.name == "eventTest"
    assert msg.payload == b"payload"
    assert msg.id


def test_pub_uses_context_metadata(client):
    ctx = client.with_brand(Context(), "acme")
    ctx = client.with_metadata(ctx, {"k": "v"})
    ctx = client.with_error(ctx, ValueError("boom"))
    client.pub(ctx, "evt", b"x").do()
    msg = client.out.get(timeout=1)
    assert msg.brand == "acme"
    assert msg.metadata == {"k": "v"}
    assert msg.error == "boom"
    assert msg.ack is False


def test_pub_keeps_id_from_context(client):
    ctx = Context().with_meta(EventMeta(id="fixed-id"))
    msg = client.pub(ctx, "evt", b"").do()
    assert msg.id == "fixed-id"
    assert client.out.get(timeout=1).id == "fixed-id"


def test_pub_generates_distinct_ids(client):
    first = client.pub(Context(), "evt", b"").id
    second = client.pub(Context(), "evt", b"").id
    assert first != second
    assert len(first) == 36


def test_brand_round_trip_does_not_change_original(client):
    original = client.with_brand(Context(), "first")
    derived = client.with_brand(original, "second")
    assert client.brand(original) == "first"
    assert client.brand(derived) == "second"
    assert client.brand(Context()) == ""


def test_ack_message_is_resent_until_approved(client):
    ctx = client.ack(Context())
    msg = client.pub(ctx, "evt", b"data").do()
    assert msg.ack is True
    assert client.ack_store.pending() == [msg.id]
    time.sleep(0.3)
    received = []
    while not client.out.empty():
        received.append(client.out.get())
    assert len(received) >= 3
    assert all(m.id == msg.id for m in received)

    client.handle_incoming(Message(id=msg.id, name="_.ack"))
    assert client.ack_store.pending() == []
    time.sleep(0.1)
    while not client.out.empty():
        client.out.get()
    time.sleep(0.15)
    assert client.out.empty()


def test_subscriber_receives_payload(client):
    got = queue.Queue()
    client.sub(Context(), "eventX", lambda ctx, payload: got.put((ctx, payload)))
    client.incoming.put(Message(name="eventX", payload=b"testdata", brand="b1"))
    ctx, payload = got.get(timeout=1)
    assert payload == b"testdata"
    assert client.brand(ctx) == "b1"


def test_subscriber_unregistered_when_context_ends(client):
    ctx = Context()
    client.sub(ctx, "eventY", lambda c, p: None)
    assert "eventY" in client.subscribers
    ctx.cancel()
    deadline = time.monotonic() + 1
    while "eventY" in client.subscribers and time.monotonic() < deadline:
        time.sleep(0.01)
    assert "eventY" not in client.subscribers


def _respond(client, name, payload=b"", error=""):
    def run():
        msg = client.out.get(timeout=2)
        client.incoming.put(Message(id=msg.id, name=name, payload=payload, error=error))

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


def test_pub_sub_returns_response_payload(client):
    _respond(client, "reply", payload=b"pong")
    assert client.pub(Context(), "ping", b"").sub("reply") == b"pong"


def test_pub_sub_raises_response_error(client):
    _respond(client, "reply", error="failed")
    with pytest.raises(ResponseError, match="failed"):
        client.pub(Context(), "ping", b"").sub("reply")


def test_pub_sub_raises_when_context_times_out(client):
    ctx = Context().with_timeout(0.05)
    with pytest.raises(TimeoutError):
        client.pub(ctx, "ping", b"").sub("never")


def test_shards_are_parsed_from_host():
    c = make_client(host="https:a.example.com::80:81, http:b.example.com::82:83")
    try:
        assert c.shards.hosts() == ["a.example.com", "b.example.com"]
        shard = c.shards.get("b.example.com")
        assert shard.cert_url() == "http://b.example.com:82/ca"
        assert shard.broker_address() == "b.example.com:83"
        assert shard.options.module == "testModule"
        assert shard.options.out is c.out
        assert shard.options.incoming is c.incoming
    finally:
        c.close()


def test_connector_started_for_each_shard():
    started = queue.Queue()
    c = make_client(
        host="https:a.example.com::80:81,https:b.example.com::80:81",
        connector=lambda shard: started.put(shard.host),
    )
    try:
        hosts = {started.get(timeout=1), started.get(timeout=1)}
        assert hosts == {"a.example.com", "b.example.com"}
    finally:
        c.close()


@pytest.mark.parametrize(
    "host, message",
    [
        ("", "empty shard string"),
        ("https:a.example.com::80:81,", "empty shard string"),
        ("http.localhost:80.81", "invalid shard format"),
        ("https::80:81", "invalid url format"),
        ("https:a.example.com::80", "invalid ports format"),
    ],
)
def test_invalid_host_raises(host, message):
    with pytest.raises(ValueError, match=message):
        make_client(host=host)


def test_close_stops_resends():
    c = make_client()
    c.pub(c.ack(Context()), "evt", b"").do()
    c.close()
    assert c.ack_store.pending() == []
    with pytest.raises(RuntimeError):
        c.pub(c.ack(Context()), "evt", b"").do()