"""Application wiring.

``run`` starts a long-lived processor; ``send_event`` publishes a single
event; ``run_demo`` drives two orders through an in-memory broker.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

from .bus.bus import create_broker
from .bus.memory_bus import MemoryBroker
from .core.config import Settings, load_settings
from .core.enums import IntentKind
from .core.events import OrderEvent, OrderState
from .core.models import PublishAck
from .dispatch.dispatcher import Dispatcher
from .dispatch.handlers import RecordingHandler, broker_command_handlers
from .observability.alerts import OperatorChannel
from .observability.logger import setup_logging
from .processing.processor import OrderEventProcessor
from .processing.retry import RetryPolicy
from .publisher import OrderCommands, OrderEventPublisher

logger = logging.getLogger(__name__)


def _setup_observability(settings: Settings) -> None:
    setup_logging(
        level=settings.observability.log_level,
        format=settings.observability.log_format,
    )
    if not settings.observability.metrics_enabled:
        return
    try:
        from .observability.metrics import start_metrics_server

        start_metrics_server(
            port=settings.observability.metrics_port,
            backend=settings.broker.backend.value,
        )
        logger.info(
            "Prometheus metrics server started on port %d",
            settings.observability.metrics_port,
        )
    except OSError:
        logger.warning("Failed to start metrics server", exc_info=True)


async def run(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Main entry point. Load config, wire modules, process until stopped."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    _setup_observability(settings)

    logger.info(
        "Starting orderflow",
        extra={
            "backend": settings.broker.backend.value,
            "topic": settings.broker.topic,
            "group": settings.broker.group,
        },
    )

    stop_event = stop_event or asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Not supported on this platform's event loop.
            pass

    broker = create_broker(settings.broker)
    async with broker:
        alerts = OperatorChannel(broker, settings.broker.alerts_topic)
        dispatcher = Dispatcher(broker_command_handlers(broker))
        processor = OrderEventProcessor.from_settings(
            settings, broker, dispatcher, alerts=alerts,
        )
        await processor.start()
        try:
            await stop_event.wait()
        finally:
            await processor.stop()

    logger.info("Shutdown complete")


async def send_event(settings: Settings, event: OrderEvent) -> PublishAck:
    """Publish one event and release the broker connection."""
    broker = create_broker(settings.broker)
    async with broker:
        alerts = OperatorChannel(broker, settings.broker.alerts_topic)
        publisher = OrderEventPublisher(
            broker,
            topic=settings.broker.topic,
            retry=RetryPolicy.from_config(settings.retry),
            alerts=alerts,
        )
        return await publisher.publish(event)


async def run_demo(customer_id: str = "customer-1") -> list[OrderState]:
    """Run two orders through an in-memory pipeline and return final states.

    The first order completes normally; its PAID and SHIPPED events are
    published out of order to show resequencing.  The second is cancelled
    after payment.
    """
    settings = Settings()
    broker = MemoryBroker(partitions=settings.broker.partitions)
    recorder = RecordingHandler()

    async with broker:
        dispatcher = Dispatcher({kind: recorder for kind in IntentKind})
        processor = OrderEventProcessor.from_settings(settings, broker, dispatcher)
        publisher = OrderEventPublisher(broker, topic=settings.broker.topic)
        commands = OrderCommands(publisher)

        await processor.start()
        try:
            first = await commands.create_order(customer_id)
            order_id = first.order_id
            allocator = commands.allocator
            paid = OrderEvent.paid(order_id, customer_id, allocator.next_sequence(order_id))
            shipped = OrderEvent.shipped(order_id, customer_id, allocator.next_sequence(order_id))
            await publisher.publish(shipped)
            await publisher.publish(paid)
            await commands.deliver(order_id, customer_id)

            second = await commands.create_order(customer_id)
            await commands.pay(second.order_id, customer_id)
            await commands.cancel(second.order_id, customer_id, reason="out of stock")

            while broker.backlog(settings.broker.topic, settings.broker.group):
                await asyncio.sleep(0)
            await processor.drain()
        finally:
            await processor.stop()

    for intent in recorder.handled:
        logger.info(
            "Intent %s order=%s seq=%d",
            intent.kind.value,
            intent.order_id,
            intent.sequence,
        )
    return processor.engine.states()
