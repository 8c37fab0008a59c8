"""CLI entry point for the order pipeline."""

from __future__ import annotations

import click

from .core.enums import BrokerBackend, OrderStatus


@click.group()
def main() -> None:
    """Ordered, idempotent order-event processing."""


@main.command()
@click.option("--config", default="configs/orderflow.toml", help="Config file path")
@click.option(
    "--backend",
    type=click.Choice([b.value for b in BrokerBackend]),
    default=None,
    help="Broker backend override",
)
@click.option("--lanes", type=int, default=None, help="Number of processing lanes")
def run(config: str, backend: str | None, lanes: int | None) -> None:
    """Consume order events until SIGINT/SIGTERM."""
    import asyncio

    from .main import run as run_processor

    overrides: dict = {}
    if backend:
        overrides["broker"] = {"backend": backend}
    if lanes:
        overrides["lanes"] = {"num_lanes": lanes}

    asyncio.run(run_processor(config_path=config, overrides=overrides))


@main.command()
@click.argument("status", type=click.Choice([s.value for s in OrderStatus], case_sensitive=False))
@click.argument("order_id")
@click.option("--customer-id", required=True, help="Customer placing the order")
@click.option("--sequence", type=int, required=True, help="Per-order sequence number (>= 1)")
@click.option("--description", default=None, help="Override the default description")
@click.option("--reason", default=None, help="Cancellation reason (CANCELLED only)")
@click.option("--config", default="configs/orderflow.toml", help="Config file path")
def send(
    status: str,
    order_id: str,
    customer_id: str,
    sequence: int,
    description: str | None,
    reason: str | None,
    config: str,
) -> None:
    """Publish a single order event."""
    import asyncio

    from .core.config import load_settings
    from .core.events import OrderEvent
    from .main import send_event

    factories = {
        OrderStatus.CREATED: OrderEvent.created,
        OrderStatus.PAID: OrderEvent.paid,
        OrderStatus.SHIPPED: OrderEvent.shipped,
        OrderStatus.DELIVERED: OrderEvent.delivered,
    }
    order_status = OrderStatus(status.upper())
    extra: dict = {}
    if description is not None:
        extra["description"] = description

    if order_status == OrderStatus.CANCELLED:
        if reason is not None:
            extra["reason"] = reason
        event = OrderEvent.cancelled(order_id, customer_id, sequence, **extra)
    else:
        event = factories[order_status](order_id, customer_id, sequence, **extra)

    settings = load_settings(config_path=config)
    ack = asyncio.run(send_event(settings, event))
    click.echo(
        f"Published {event.status.value} order={ack.order_id} seq={ack.sequence} "
        f"partition={ack.partition} offset={ack.offset}"
    )


@main.command()
@click.option("--customer-id", default="customer-1", help="Customer for the demo orders")
def demo(customer_id: str) -> None:
    """Run two orders through an in-memory pipeline."""
    import asyncio

    from .main import run_demo
    from .observability.logger import setup_logging

    setup_logging(level="INFO", format="console")
    states = asyncio.run(run_demo(customer_id))
    for state in states:
        history = " -> ".join(s.value for s in (*state.history, state.current_status))
        click.echo(f"{state.order_id}: {history} (last seq {state.last_applied_sequence})")


if __name__ == "__main__":
    main()
