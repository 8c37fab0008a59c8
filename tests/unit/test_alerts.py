"""Test the operator channel."""

from orderflow.bus.schemas import decode
from orderflow.core.enums import AlertSeverity, RejectReason
from orderflow.core.events import OperatorAlert
from orderflow.observability.alerts import OperatorChannel


class TestOperatorChannel:
    async def test_report_retains_and_counts(self):
        channel = OperatorChannel()
        alert = await channel.report(
            RejectReason.GAP_TIMEOUT,
            severity=AlertSeverity.WARNING,
            order_id="ord-1",
            sequence=3,
            detail="waited 31s",
        )
        assert channel.alerts == [alert]
        assert alert.order_id == "ord-1"
        assert alert.sequence == 3
        assert channel.get_counts() == {"gap-timeout": 1}

    async def test_retention_is_bounded(self):
        channel = OperatorChannel(max_retained=2)
        for seq in range(1, 4):
            await channel.report(RejectReason.HANDLER_FAILURE, sequence=seq)
        assert [a.sequence for a in channel.alerts] == [2, 3]
        assert channel.get_counts() == {"handler-failure": 3}

    async def test_drain(self):
        channel = OperatorChannel()
        await channel.report(RejectReason.MALFORMED_MESSAGE)
        assert len(channel.drain()) == 1
        assert channel.alerts == []

    async def test_callback_failure_does_not_stop_report(self):
        received = []

        def on_alert(alert):
            received.append(alert)
            raise RuntimeError("pager down")

        channel = OperatorChannel(on_alert=on_alert)
        alert = await channel.report(RejectReason.PUBLISH_FAILURE)
        assert received == [alert]
        assert channel.alerts == [alert]

    async def test_forwards_to_broker(self, memory_broker):
        channel = OperatorChannel(memory_broker, "order-events.alerts")
        await channel.report(
            RejectReason.BUFFER_EXHAUSTED,
            severity=AlertSeverity.CRITICAL,
            order_id="ord-1",
        )
        [record] = memory_broker.records("order-events.alerts")
        assert record.key == "ord-1"
        forwarded = decode(record.value, OperatorAlert)
        assert forwarded.reason == RejectReason.BUFFER_EXHAUSTED
        assert forwarded.severity == AlertSeverity.CRITICAL

    async def test_forward_failure_is_logged_not_raised(self, memory_broker):
        channel = OperatorChannel(memory_broker, "order-events.alerts")
        memory_broker.fail_next(1)
        await channel.report(RejectReason.GAP_TIMEOUT, order_id="ord-1")
        assert len(channel.alerts) == 1
        assert memory_broker.records("order-events.alerts") == []

    async def test_no_topic_means_no_forwarding(self, memory_broker):
        channel = OperatorChannel(memory_broker)
        await channel.report(RejectReason.GAP_TIMEOUT)
        assert memory_broker.records("order-events.alerts") == []
