"""Test the order state machine and the intents each transition plans."""

import pytest

from orderflow.core.enums import IntentKind, OrderStatus, RejectReason
from orderflow.engine.transitions import VALID_TRANSITIONS, TransitionEngine


def _create(engine: TransitionEngine, order_id: str = "ord-1"):
    return engine.apply(order_id, OrderStatus.CREATED, sequence=1, customer_id="cust-1")


class TestValidTransitions:
    def test_full_lifecycle(self, engine):
        _create(engine)
        for seq, status in enumerate(
            [OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED], start=2
        ):
            result = engine.apply("ord-1", status, sequence=seq)
            assert result.ok, result.detail

        state = engine.get_state("ord-1")
        assert state.current_status == OrderStatus.DELIVERED
        assert state.last_applied_sequence == 4
        assert state.history == (
            OrderStatus.CREATED, OrderStatus.PAID, OrderStatus.SHIPPED,
        )
        assert state.customer_id == "cust-1"
        assert state.is_terminal

    def test_cancel_from_created(self, engine):
        _create(engine)
        assert engine.apply("ord-1", OrderStatus.CANCELLED).ok

    def test_cancel_from_paid(self, engine):
        _create(engine)
        engine.apply("ord-1", OrderStatus.PAID)
        assert engine.apply("ord-1", OrderStatus.CANCELLED).ok

    def test_sequence_defaults_to_next(self, engine):
        _create(engine)
        result = engine.apply("ord-1", OrderStatus.PAID)
        assert result.state.last_applied_sequence == 2

    def test_terminal_states_have_no_exits(self):
        assert VALID_TRANSITIONS[OrderStatus.DELIVERED] == frozenset()
        assert VALID_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()


class TestRejections:
    @pytest.mark.parametrize(
        "path, bad",
        [
            ([], OrderStatus.SHIPPED),
            ([], OrderStatus.DELIVERED),
            ([OrderStatus.PAID], OrderStatus.DELIVERED),
            ([OrderStatus.PAID, OrderStatus.SHIPPED], OrderStatus.CANCELLED),
            ([OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED], OrderStatus.PAID),
            ([OrderStatus.CANCELLED], OrderStatus.PAID),
            ([OrderStatus.PAID], OrderStatus.PAID),
        ],
    )
    def test_invalid_transition_leaves_state_unchanged(self, engine, path, bad):
        _create(engine)
        for status in path:
            assert engine.apply("ord-1", status).ok
        before = engine.get_state("ord-1")

        result = engine.apply("ord-1", bad)

        assert not result.ok
        assert result.reason == RejectReason.INVALID_TRANSITION
        assert result.side_effects == ()
        assert result.state == before
        assert engine.get_state("ord-1") == before

    def test_unknown_order(self, engine):
        result = engine.apply("ord-missing", OrderStatus.PAID, sequence=2)
        assert not result.ok
        assert result.reason == RejectReason.UNKNOWN_ENTITY
        assert engine.get_state("ord-missing") is None
        assert len(engine) == 0

    def test_second_created_rejected(self, engine):
        _create(engine)
        result = engine.apply("ord-1", OrderStatus.CREATED, sequence=2)
        assert not result.ok
        assert result.reason == RejectReason.INVALID_TRANSITION
        assert engine.get_state("ord-1").last_applied_sequence == 1


class TestSideEffects:
    def test_created_checks_inventory_then_requests_payment(self, engine):
        result = _create(engine)
        assert [i.kind for i in result.side_effects] == [
            IntentKind.INVENTORY_CHECK, IntentKind.PAYMENT_REQUEST,
        ]
        assert all(i.order_id == "ord-1" for i in result.side_effects)
        assert all(i.customer_id == "cust-1" for i in result.side_effects)

    def test_paid_requests_shipping(self, engine):
        _create(engine)
        result = engine.apply("ord-1", OrderStatus.PAID, sequence=2)
        assert [i.kind for i in result.side_effects] == [IntentKind.SHIPPING_REQUEST]
        assert result.side_effects[0].sequence == 2
        assert result.side_effects[0].status == OrderStatus.PAID

    def test_shipped_and_delivered_notify(self, engine):
        _create(engine)
        engine.apply("ord-1", OrderStatus.PAID)
        shipped = engine.apply("ord-1", OrderStatus.SHIPPED)
        delivered = engine.apply("ord-1", OrderStatus.DELIVERED)
        assert shipped.side_effects[0].kind == IntentKind.NOTIFICATION_REQUEST
        assert shipped.side_effects[0].payload["template"] == "shipment-started"
        assert delivered.side_effects[0].payload == {
            "template": "order-delivered", "request_review": True,
        }

    def test_cancel_after_payment_refunds_captured_payment(self, engine):
        _create(engine)
        engine.apply("ord-1", OrderStatus.PAID)
        result = engine.apply("ord-1", OrderStatus.CANCELLED)
        refund, notify = result.side_effects
        assert refund.kind == IntentKind.REFUND_REQUEST
        assert refund.payload["payment_captured"] is True
        assert refund.payload["cancelled_from"] == "PAID"
        assert notify.kind == IntentKind.NOTIFICATION_REQUEST
        assert notify.payload["template"] == "order-cancelled"

    def test_cancel_before_payment_releases_inventory_only(self, engine):
        _create(engine)
        refund, _notify = engine.apply("ord-1", OrderStatus.CANCELLED).side_effects
        assert refund.payload["payment_captured"] is False
        assert refund.payload["release_inventory"] is True


class TestQueries:
    def test_states_and_len(self, engine):
        _create(engine, "ord-a")
        _create(engine, "ord-b")
        assert len(engine) == 2
        assert {s.order_id for s in engine.states()} == {"ord-a", "ord-b"}

    def test_apply_event(self, engine, make_event):
        result = engine.apply_event(make_event("ord-x", OrderStatus.CREATED, 1, "cust-x"))
        assert result.ok
        assert engine.get_state("ord-x").customer_id == "cust-x"
