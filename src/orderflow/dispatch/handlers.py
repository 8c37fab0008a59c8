"""Side-effect handler implementations.

``BrokerCommandHandler`` is the production handler: it forwards an intent
as a command message to the downstream service's topic, keyed by order id
so the downstream consumer sees one order's commands in order.
"""

from __future__ import annotations

import json
import logging

from orderflow.core.enums import IntentKind
from orderflow.core.errors import HandlerNotImplementedError
from orderflow.core.events import SideEffectIntent
from orderflow.core.interfaces import IBroker, IIntentHandler

logger = logging.getLogger(__name__)


# Capability -> downstream command topic
COMMAND_TOPICS: dict[IntentKind, str] = {
    IntentKind.INVENTORY_CHECK: "inventory.commands",
    IntentKind.PAYMENT_REQUEST: "payment.commands",
    IntentKind.SHIPPING_REQUEST: "shipping.commands",
    IntentKind.NOTIFICATION_REQUEST: "notification.commands",
    IntentKind.REFUND_REQUEST: "refund.commands",
}


class BrokerCommandHandler:
    """Publish the intent as a JSON command on the capability's topic."""

    def __init__(self, broker: IBroker, topic: str) -> None:
        self._broker = broker
        self._topic = topic

    @property
    def topic(self) -> str:
        return self._topic

    async def __call__(self, intent: SideEffectIntent) -> None:
        body = json.dumps(
            {
                "command": intent.kind.value,
                "orderId": intent.order_id,
                "customerId": intent.customer_id,
                "sequence": intent.sequence,
                "status": intent.status.value,
                "payload": intent.payload,
            },
            sort_keys=True,
        ).encode("utf-8")
        ack = await self._broker.send(self._topic, intent.order_id, body)
        logger.debug(
            "Command sent: %s order=%s -> %s[%d]@%s",
            intent.kind.value,
            intent.order_id,
            ack.topic,
            ack.partition,
            ack.offset,
        )


class NotImplementedHandler:
    """Explicit placeholder for a capability with no implementation."""

    def __init__(self, kind: IntentKind) -> None:
        self._kind = kind

    async def __call__(self, intent: SideEffectIntent) -> None:
        raise HandlerNotImplementedError(self._kind.value)


class RecordingHandler:
    """Keeps every intent it receives.  Used by the in-memory demo and tests."""

    def __init__(self) -> None:
        self.handled: list[SideEffectIntent] = []

    async def __call__(self, intent: SideEffectIntent) -> None:
        self.handled.append(intent)
        logger.info(
            "Handled %s for order=%s seq=%d",
            intent.kind.value,
            intent.order_id,
            intent.sequence,
        )


def broker_command_handlers(
    broker: IBroker,
    topics: dict[IntentKind, str] | None = None,
) -> dict[IntentKind, IIntentHandler]:
    """Build the default dispatch table: every capability forwards to the broker."""
    topics = {**COMMAND_TOPICS, **(topics or {})}
    return {kind: BrokerCommandHandler(broker, topics[kind]) for kind in IntentKind}
