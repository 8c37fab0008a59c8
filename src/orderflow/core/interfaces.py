"""Protocol interfaces for the order pipeline.

Module boundaries are defined here as Protocol classes so broker
backends and side-effect handlers can be swapped without changing callers.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from .events import SideEffectIntent
from .models import BrokerAck, BrokerRecord


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

@runtime_checkable
class IBroker(Protocol):
    """Keyed, partitioned topic broker.

    Records sharing a key land on the same partition and are delivered in
    send order.  ``send`` resolves once the broker has accepted the record;
    consumers call ``ack`` after they have finished with a record.
    """

    async def start(self) -> None: ...
    async def stop(self) -> None: ...

    async def send(self, topic: str, key: str, value: bytes) -> BrokerAck: ...

    def subscribe(self, topic: str, group: str) -> AsyncIterator[BrokerRecord]: ...

    async def ack(self, group: str, record: BrokerRecord) -> None: ...


# ---------------------------------------------------------------------------
# Side-effect handlers
# ---------------------------------------------------------------------------

@runtime_checkable
class IIntentHandler(Protocol):
    """Executes one kind of side-effect intent.

    Raising is the only way to signal failure; returning means done.
    """

    async def __call__(self, intent: SideEffectIntent) -> None: ...
