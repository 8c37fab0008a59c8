"""Test OrderEvent construction, factories, immutability and wire aliases."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from orderflow.core.enums import IntentKind, OrderStatus
from orderflow.core.events import OrderEvent, OrderState, SideEffectIntent


class TestOrderEventFactories:
    def test_created_defaults(self):
        event = OrderEvent.created("ord-1", "cust-1")
        assert event.status == OrderStatus.CREATED
        assert event.sequence == 1
        assert event.description == "Order created"
        assert event.timestamp.tzinfo is not None

    def test_lifecycle_factories_set_status(self):
        assert OrderEvent.paid("o", "c", 2).status == OrderStatus.PAID
        assert OrderEvent.shipped("o", "c", 3).status == OrderStatus.SHIPPED
        assert OrderEvent.delivered("o", "c", 4).status == OrderStatus.DELIVERED

    def test_cancelled_default_reason(self):
        event = OrderEvent.cancelled("ord-1", "cust-1", 2)
        assert event.status == OrderStatus.CANCELLED
        assert event.description == "Order cancelled: customer request"

    def test_cancelled_custom_reason(self):
        event = OrderEvent.cancelled("ord-1", "cust-1", 2, reason="out of stock")
        assert event.description.endswith("out of stock")

    def test_factory_accepts_description_override(self):
        event = OrderEvent.paid("o", "c", 2, description="paid by card")
        assert event.description == "paid by card"

    def test_every_factory_accepts_description_override(self):
        events = [
            OrderEvent.created("o", "c", description="custom"),
            OrderEvent.shipped("o", "c", 3, description="custom"),
            OrderEvent.delivered("o", "c", 4, description="custom"),
            OrderEvent.cancelled("o", "c", 2, reason="fraud", description="custom"),
        ]
        assert [e.description for e in events] == ["custom"] * 4

    def test_cancelled_reason_used_without_override(self):
        event = OrderEvent.cancelled("o", "c", 2, reason="out of stock")
        assert event.description == "Order cancelled: out of stock"


class TestOrderEventValidation:
    def test_frozen(self):
        event = OrderEvent.created("ord-1", "cust-1")
        with pytest.raises(ValidationError):
            event.status = OrderStatus.PAID

    def test_sequence_must_be_positive(self):
        with pytest.raises(ValidationError):
            OrderEvent(order_id="o", status=OrderStatus.CREATED, sequence=0)

    def test_order_id_required(self):
        with pytest.raises(ValidationError):
            OrderEvent(order_id="", status=OrderStatus.CREATED, sequence=1)

    def test_naive_timestamp_treated_as_utc(self):
        event = OrderEvent(
            order_id="o",
            status=OrderStatus.CREATED,
            sequence=1,
            timestamp=datetime(2024, 6, 1, 12, 0, 0),
        )
        assert event.timestamp == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestOrderEventWireAliases:
    def test_dump_uses_camel_case(self):
        event = OrderEvent.created("ord-1", "cust-1")
        data = event.model_dump(mode="json", by_alias=True)
        assert set(data) == {
            "orderId", "customerId", "status", "description", "timestamp", "sequence",
        }
        assert data["status"] == "CREATED"

    def test_validate_from_camel_case_ignores_unknown_fields(self):
        event = OrderEvent.model_validate(
            {
                "orderId": "ord-9",
                "customerId": "cust-9",
                "status": "PAID",
                "description": "x",
                "timestamp": "2024-06-01T00:00:00Z",
                "sequence": 2,
                "channel": "mobile",
            }
        )
        assert event.order_id == "ord-9"
        assert event.status == OrderStatus.PAID
        assert not hasattr(event, "channel")


class TestOrderState:
    def test_terminal_statuses(self):
        for status, terminal in [
            (OrderStatus.CREATED, False),
            (OrderStatus.PAID, False),
            (OrderStatus.SHIPPED, False),
            (OrderStatus.DELIVERED, True),
            (OrderStatus.CANCELLED, True),
        ]:
            state = OrderState(order_id="o", current_status=status)
            assert state.is_terminal is terminal

    def test_intent_is_frozen(self):
        intent = SideEffectIntent(
            kind=IntentKind.SHIPPING_REQUEST, order_id="o", status=OrderStatus.PAID,
        )
        with pytest.raises(ValidationError):
            intent.order_id = "other"
