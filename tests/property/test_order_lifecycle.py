"""Property tests: ordering and idempotency of the sequencer + engine.

Uses hypothesis to shuffle and duplicate the events of valid lifecycles
and checks the outcome never depends on arrival order, and to feed the
engine random status sequences and check it never leaves the state graph.
"""

from hypothesis import given, settings, strategies as st

from orderflow.core.enums import AdmitOutcome, OrderStatus
from orderflow.core.events import OrderEvent
from orderflow.engine.sequencer import Sequencer
from orderflow.engine.transitions import VALID_TRANSITIONS, TransitionEngine

# Every complete path through the state graph.
LIFECYCLES = [
    [OrderStatus.CREATED, OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED],
    [OrderStatus.CREATED, OrderStatus.PAID, OrderStatus.CANCELLED],
    [OrderStatus.CREATED, OrderStatus.CANCELLED],
]


def _events(order_id: str, statuses: list[OrderStatus]) -> list[OrderEvent]:
    return [
        OrderEvent(order_id=order_id, customer_id="cust", status=status, sequence=seq)
        for seq, status in enumerate(statuses, start=1)
    ]


def _run(events: list[OrderEvent]):
    """Admit *events* in the given order; return final states and intents."""
    engine = TransitionEngine()
    sequencer = Sequencer(engine, max_buffer=16, gap_timeout=3600.0)
    intents = []
    for event in events:
        result = sequencer.admit(event)
        assert result.outcome != AdmitOutcome.REJECTED, result.detail
        intents.extend((i.order_id, i.kind, i.sequence) for i in result.side_effects)
    states = {
        s.order_id: (s.current_status, s.last_applied_sequence, s.history)
        for s in engine.states()
    }
    return states, intents


@st.composite
def _arrivals(draw):
    """Events for up to three orders, shuffled and with redeliveries."""
    count = draw(st.integers(min_value=1, max_value=3))
    in_order: list[OrderEvent] = []
    for n in range(count):
        lifecycle = draw(st.sampled_from(LIFECYCLES))
        in_order.extend(_events(f"ord-{n}", lifecycle))
    redelivered = draw(st.lists(st.sampled_from(in_order), max_size=6))
    shuffled = draw(st.permutations(in_order + redelivered))
    return in_order, shuffled


class TestArrivalOrderIndependence:
    @given(_arrivals())
    @settings(max_examples=200)
    def test_final_state_matches_in_order_run(self, arrivals):
        in_order, shuffled = arrivals
        expected_states, _ = _run(in_order)
        actual_states, _ = _run(shuffled)
        assert actual_states == expected_states

    @given(_arrivals())
    @settings(max_examples=200)
    def test_each_intent_emitted_exactly_once(self, arrivals):
        in_order, shuffled = arrivals
        _, expected_intents = _run(in_order)
        _, actual_intents = _run(shuffled)
        assert sorted(actual_intents) == sorted(expected_intents)
        assert len(set(actual_intents)) == len(actual_intents)

    @given(_arrivals())
    @settings(max_examples=200)
    def test_per_order_intents_follow_sequence(self, arrivals):
        _, shuffled = arrivals
        _, intents = _run(shuffled)
        by_order: dict[str, list[int]] = {}
        for order_id, _kind, sequence in intents:
            by_order.setdefault(order_id, []).append(sequence)
        for sequences in by_order.values():
            assert sequences == sorted(sequences)


class TestEngineNeverCorrupts:
    @given(st.lists(st.sampled_from(list(OrderStatus)), min_size=1, max_size=12))
    @settings(max_examples=300)
    def test_random_status_sequences(self, statuses):
        engine = TransitionEngine()
        for seq, status in enumerate(statuses, start=1):
            before = engine.get_state("ord-1")
            result = engine.apply("ord-1", status, sequence=seq)
            after = engine.get_state("ord-1")

            if not result.ok:
                assert after == before
                assert result.side_effects == ()
                continue

            assert after.current_status == status
            assert after.last_applied_sequence == seq
            if before is None:
                assert status == OrderStatus.CREATED
            else:
                assert status in VALID_TRANSITIONS[before.current_status]
                assert after.history == before.history + (before.current_status,)

        final = engine.get_state("ord-1")
        if final is not None:
            path = final.history + (final.current_status,)
            for current, nxt in zip(path, path[1:]):
                assert nxt in VALID_TRANSITIONS[current]
