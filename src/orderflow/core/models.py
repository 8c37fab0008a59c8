"""Result records passed between pipeline stages.

These are plain frozen dataclasses: they never cross the wire, they only
carry outcomes from one component to its caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .enums import AdmitOutcome, IntentKind, RejectReason
from .events import OrderEvent, OrderState, SideEffectIntent


# ---------------------------------------------------------------------------
# Transition engine
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    order_id: str
    side_effects: tuple[SideEffectIntent, ...] = ()
    reason: RejectReason | None = None
    detail: str = ""
    state: OrderState | None = None

    @classmethod
    def rejected(
        cls,
        order_id: str,
        reason: RejectReason,
        detail: str,
        state: OrderState | None = None,
    ) -> TransitionResult:
        return cls(
            ok=False, order_id=order_id, reason=reason, detail=detail, state=state,
        )


# ---------------------------------------------------------------------------
# Sequencer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Application:
    """One event handed to the transition engine, with its result."""

    event: OrderEvent
    result: TransitionResult


@dataclass(frozen=True)
class AdmitResult:
    outcome: AdmitOutcome
    event: OrderEvent
    reason: RejectReason | None = None
    detail: str = ""
    applied: tuple[Application, ...] = ()
    duplicate: bool = False

    @property
    def side_effects(self) -> tuple[SideEffectIntent, ...]:
        """All intents produced by this admission, in apply order."""
        return tuple(
            intent
            for application in self.applied
            if application.result.ok
            for intent in application.result.side_effects
        )


@dataclass(frozen=True)
class Eviction:
    """A buffered event dropped from the holding area, for reporting."""

    event: OrderEvent
    reason: RejectReason
    waited_seconds: float
    expected_sequence: int


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    kind: IntentKind
    order_id: str
    sequence: int
    reason: RejectReason | None = None
    error: str = ""


# ---------------------------------------------------------------------------
# Broker / publisher
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BrokerAck:
    """Broker confirmation that a record is durable at (partition, offset)."""

    topic: str
    partition: int
    offset: str


@dataclass(frozen=True)
class BrokerRecord:
    topic: str
    key: str
    value: bytes
    partition: int
    offset: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PublishAck:
    topic: str
    partition: int
    offset: str
    order_id: str
    sequence: int
    attempts: int = 1
