"""Operator channel.

Failures that the pipeline cannot recover by itself (exhausted retries,
buffer exhaustion, gap timeouts, undecodable records) end up here.  Each
report is logged at a level matching its severity, counted in Prometheus,
kept in a bounded in-memory list for health endpoints and tests, and
optionally forwarded to an alerts topic on the broker.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Callable
from typing import Any

from orderflow.bus.schemas import encode
from orderflow.core.enums import AlertSeverity, RejectReason
from orderflow.core.errors import BrokerError, SchemaError
from orderflow.core.events import OperatorAlert
from orderflow.core.interfaces import IBroker

from .metrics import record_alert

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.ERROR: logging.ERROR,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}


class OperatorChannel:
    """Operator-visible sink for unrecovered failures.

    Parameters
    ----------
    broker, topic:
        When both are set, every alert is also sent to *topic*.
    max_retained:
        Number of most recent alerts kept in memory.
    on_alert:
        Optional callback invoked with each alert (paging, webhooks).
    """

    def __init__(
        self,
        broker: IBroker | None = None,
        topic: str = "",
        max_retained: int = 1000,
        on_alert: Callable[[OperatorAlert], None] | None = None,
    ) -> None:
        self._broker = broker
        self._topic = topic
        self._alerts: deque[OperatorAlert] = deque(maxlen=max_retained)
        self._counts: dict[str, int] = defaultdict(int)
        self._on_alert = on_alert

    async def report(
        self,
        reason: RejectReason,
        *,
        severity: AlertSeverity = AlertSeverity.ERROR,
        order_id: str = "",
        sequence: int | None = None,
        detail: str = "",
        payload: dict[str, Any] | None = None,
    ) -> OperatorAlert:
        alert = OperatorAlert(
            reason=reason,
            severity=severity,
            order_id=order_id,
            sequence=sequence,
            detail=detail,
            payload=payload or {},
        )
        self._alerts.append(alert)
        self._counts[reason.value] += 1
        record_alert(reason.value, severity.value)

        logger.log(
            _LOG_LEVELS[severity],
            "Operator alert [%s] order=%s seq=%s: %s",
            reason.value,
            order_id or "-",
            sequence if sequence is not None else "-",
            detail,
        )

        if self._on_alert is not None:
            try:
                self._on_alert(alert)
            except Exception:
                logger.warning("on_alert callback failed", exc_info=True)

        if self._broker is not None and self._topic:
            await self._forward(alert)

        return alert

    async def _forward(self, alert: OperatorAlert) -> None:
        try:
            await self._broker.send(  # type: ignore[union-attr]
                self._topic, alert.order_id or alert.alert_id, encode(alert),
            )
        except (BrokerError, SchemaError):
            # The alert is still retained and logged above.
            logger.exception("Failed to forward alert %s to %s", alert.alert_id, self._topic)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def alerts(self) -> list[OperatorAlert]:
        """Retained alerts, oldest first (read-only snapshot)."""
        return list(self._alerts)

    def get_counts(self) -> dict[str, int]:
        """Return per-reason alert counts since start."""
        return dict(self._counts)

    def drain(self) -> list[OperatorAlert]:
        """Remove and return all retained alerts."""
        drained = list(self._alerts)
        self._alerts.clear()
        return drained
