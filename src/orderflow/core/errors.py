"""Custom exception hierarchy for the order pipeline.

Ordering and transition problems are reported as result objects, not
exceptions.  The classes below cover failures that callers must handle
explicitly: bad configuration, broker faults, exhausted retries and
handlers that cannot run.
"""


class OrderFlowError(Exception):
    """Base exception for all order pipeline errors."""


# --- Configuration ---
class ConfigError(OrderFlowError):
    """Invalid or missing configuration."""


# --- Broker ---
class BrokerError(OrderFlowError):
    """Broker communication error."""


class BrokerNotStartedError(BrokerError):
    """Operation attempted before ``start()`` or after ``stop()``."""


class SchemaError(OrderFlowError):
    """A broker record could not be decoded into an event."""


# --- Publish ---
class PublishError(OrderFlowError):
    """Publishing an event failed after exhausting the retry budget."""

    def __init__(self, order_id: str, sequence: int, attempts: int, reason: str):
        self.order_id = order_id
        self.sequence = sequence
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Publish failed for order={order_id} seq={sequence} "
            f"after {attempts} attempts: {reason}"
        )


class OrderIdCollisionError(OrderFlowError):
    """An order id was issued twice."""


# --- Handlers ---
class HandlerError(OrderFlowError):
    """A side-effect handler could not complete its work."""


class HandlerNotImplementedError(HandlerError):
    """No real handler has been wired for this capability."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No handler implemented for intent kind [{kind}]")
