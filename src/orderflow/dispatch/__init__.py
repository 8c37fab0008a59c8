"""Side-effect dispatch table and handlers."""

from __future__ import annotations

from .dispatcher import Dispatcher
from .handlers import (
    BrokerCommandHandler,
    NotImplementedHandler,
    RecordingHandler,
    broker_command_handlers,
)

__all__ = [
    "BrokerCommandHandler",
    "Dispatcher",
    "NotImplementedHandler",
    "RecordingHandler",
    "broker_command_handlers",
]
