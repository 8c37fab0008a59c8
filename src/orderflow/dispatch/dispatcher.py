"""Side-effect dispatch table.

Every ``IntentKind`` maps to exactly one handler.  A dispatcher cannot be
built with a capability missing: wire ``NotImplementedHandler`` explicitly
if a capability really has no implementation yet, and it will fail loudly
at dispatch time.

Handler failures are returned as ``DispatchResult(ok=False)`` so the
caller can retry the intent; they are logged with a traceback and counted
but never swallowed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping

from orderflow.core.enums import IntentKind, RejectReason
from orderflow.core.errors import ConfigError
from orderflow.core.events import SideEffectIntent
from orderflow.core.interfaces import IIntentHandler
from orderflow.core.models import DispatchResult

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes side-effect intents to their handler."""

    def __init__(self, handlers: Mapping[IntentKind, IIntentHandler]) -> None:
        missing = [kind.value for kind in IntentKind if kind not in handlers]
        if missing:
            raise ConfigError(
                f"Dispatcher missing handlers for: {', '.join(missing)}"
            )
        self._handlers: dict[IntentKind, IIntentHandler] = dict(handlers)

        # Observability
        self._dispatched: dict[str, int] = defaultdict(int)
        self._failures: dict[str, int] = defaultdict(int)

    async def dispatch(self, intent: SideEffectIntent) -> DispatchResult:
        """Invoke the handler for *intent* once."""
        handler = self._handlers[intent.kind]
        try:
            await handler(intent)
        except Exception as exc:
            self._failures[intent.kind.value] += 1
            logger.exception(
                "Handler error kind=%s order=%s seq=%d",
                intent.kind.value,
                intent.order_id,
                intent.sequence,
            )
            return DispatchResult(
                ok=False,
                kind=intent.kind,
                order_id=intent.order_id,
                sequence=intent.sequence,
                reason=RejectReason.HANDLER_FAILURE,
                error=f"{type(exc).__name__}: {exc}",
            )

        self._dispatched[intent.kind.value] += 1
        return DispatchResult(
            ok=True,
            kind=intent.kind,
            order_id=intent.order_id,
            sequence=intent.sequence,
        )

    async def dispatch_all(
        self, intents: Iterable[SideEffectIntent]
    ) -> list[DispatchResult]:
        """Dispatch in order, stopping at the first failure."""
        results: list[DispatchResult] = []
        for intent in intents:
            result = await self.dispatch(intent)
            results.append(result)
            if not result.ok:
                break
        return results

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_dispatch_counts(self) -> dict[str, int]:
        return dict(self._dispatched)

    def get_failure_counts(self) -> dict[str, int]:
        return dict(self._failures)
