"""Test id factories, stable hashing and the clocks."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from orderflow.core.clock import SimClock, WallClock
from orderflow.core.ids import new_id, new_order_id, slot_for, stable_hash, utc_now


class TestIds:
    def test_order_id_format(self):
        assert re.fullmatch(r"ord-[0-9a-f]{12}", new_order_id())

    def test_ids_unique(self):
        assert len({new_order_id() for _ in range(1000)}) == 1000
        assert new_id() != new_id()

    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo is timezone.utc

    def test_stable_hash_is_deterministic(self):
        assert stable_hash("ord-1") == stable_hash("ord-1")
        assert stable_hash("ord-1") != stable_hash("ord-2")

    def test_slot_for_range(self):
        assert all(0 <= slot_for(f"k{n}", 5) < 5 for n in range(100))

    def test_slot_for_rejects_zero(self):
        with pytest.raises(ValueError):
            slot_for("k", 0)


class TestClocks:
    def test_sim_clock_advances(self, sim_clock):
        start = sim_clock.now()
        sim_clock.advance(2.5)
        assert sim_clock.now() - start == timedelta(seconds=2.5)
        assert sim_clock.monotonic() == 2.5

    def test_sim_clock_cannot_go_backwards(self, sim_clock):
        with pytest.raises(ValueError):
            sim_clock.set_time(datetime(2020, 1, 1, tzinfo=timezone.utc))

    def test_default_start(self):
        assert SimClock().now() == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_wall_clock(self):
        clock = WallClock()
        assert clock.now().tzinfo is not None
        assert clock.monotonic() <= clock.monotonic()
