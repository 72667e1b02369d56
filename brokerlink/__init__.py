"""Transport-independent publish/subscribe client core for a sharded message broker."""

__version__ = "0.1.0"
__all__ = ["ack", "callbacks", "client", "metadata", "pub", "shard", "subscribers", "token"]