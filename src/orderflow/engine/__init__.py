"""Sequencing and state transitions for order events."""

from __future__ import annotations

from .sequencer import Sequencer
from .transitions import VALID_TRANSITIONS, TransitionEngine

__all__ = ["Sequencer", "TransitionEngine", "VALID_TRANSITIONS"]
