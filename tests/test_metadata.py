import time
from concurrent.futures import CancelledError

from brokerlink.metadata import (
    Context,
    EventMeta,
    Message,
    context_from_message,
    meta_from_context,
)


def test_meta_from_default_context_is_empty():
    meta = meta_from_context(Context())
    assert meta.brand == ""
    assert meta.id == ""
    assert meta.meta is None
    assert meta.ack is False


def test_meta_from_none_is_empty():
    assert meta_from_context(None) == EventMeta()


def test_meta_extracted_from_context():
    original = EventMeta(brand="testbrand", id="testid")
    ctx = Context().with_meta(original)
    meta = meta_from_context(ctx)
    assert meta.brand == "testbrand"
    assert meta.id == "testid"
    assert meta is original


def test_with_meta_none_returns_same_context():
    ctx = Context()
    assert ctx.with_meta(None) is ctx


def test_context_from_message_copies_fields():
    msg = Message(
        id="m1",
        name="event",
        brand="acme",
        metadata={"k": "v"},
        payload=b"data",
        ack=True,
        timestamp=1234,
        error="boom",
    )
    meta = meta_from_context(context_from_message(msg))
    assert meta.id == "m1"
    assert meta.name == "event"
    assert meta.brand == "acme"
    assert meta.meta == {"k": "v"}
    assert meta.ack is True
    assert meta.timestamp == 1234
    assert meta.error is None


def test_cancel_sets_state_and_error():
    ctx = Context()
    assert ctx.cancelled() is False
    assert ctx.err is None
    ctx.cancel()
    assert ctx.cancelled() is True
    assert isinstance(ctx.err, CancelledError)
    assert ctx.wait(0) is True


def test_with_meta_shares_cancellation():
    root = Context()
    child = root.with_meta(EventMeta(brand="b"))
    root.cancel()
    assert child.cancelled() is True


def test_timeout_expires():
    ctx = Context().with_timeout(0.05)
    assert ctx.wait(1.0) is True
    assert isinstance(ctx.err, TimeoutError)


def test_wait_returns_false_while_live():
    ctx = Context().with_timeout(5)
    assert ctx.wait(0.01) is False
    ctx.cancel()
    assert ctx.wait(0.01) is True


def test_parent_cancel_propagates_to_timeout_child():
    parent = Context()
    child = parent.with_timeout(10)
    parent.cancel()
    assert child.wait(1.0) is True
    assert isinstance(child.err, CancelledError)


def test_child_cancel_leaves_parent_live():
    parent = Context()
    child = parent.with_timeout(10)
    child.cancel()
    assert child.cancelled() is True
    assert parent.cancelled() is False


def test_timeout_child_of_cancelled_parent_is_cancelled():
    parent = Context()
    parent.cancel()
    child = parent.with_timeout(10)
    assert child.cancelled() is True


def test_timeout_child_keeps_meta():
    meta = EventMeta(id="x")
    ctx = Context().with_meta(meta).with_timeout(10)
    assert meta_from_context(ctx) is meta
    ctx.cancel()
    time.sleep(0)
    assert ctx.cancelled() is True