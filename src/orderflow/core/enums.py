"""Enumerations used across the order pipeline."""

from enum import Enum


class BrokerBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class OrderStatus(str, Enum):
    # Upper-case values match what upstream producers put on the wire.
    CREATED = "CREATED"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class IntentKind(str, Enum):
    """Side-effect capabilities a transition can request."""

    INVENTORY_CHECK = "inventory_check"
    PAYMENT_REQUEST = "payment_request"
    SHIPPING_REQUEST = "shipping_request"
    NOTIFICATION_REQUEST = "notification_request"
    REFUND_REQUEST = "refund_request"


class AdmitOutcome(str, Enum):
    APPLIED = "applied"
    BUFFERED = "buffered"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    """Failure taxonomy shared by sequencing, transitions, dispatch and publish."""

    INVALID_TRANSITION = "invalid-transition"
    UNKNOWN_ENTITY = "unknown-entity"
    BUFFER_EXHAUSTED = "buffer-exhausted"
    GAP_TIMEOUT = "gap-timeout"
    PUBLISH_FAILURE = "publish-failure"
    HANDLER_FAILURE = "handler-failure"
    MALFORMED_MESSAGE = "malformed-message"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
