"""orderflow: ordered, idempotent order-lifecycle event processing."""

__version__ = "0.1.0"
