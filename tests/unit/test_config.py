"""Test settings loading from TOML, overrides and environment."""

import pytest
from pydantic import ValidationError

from orderflow.core.config import RetryConfig, Settings, load_settings
from orderflow.core.enums import BrokerBackend
from orderflow.core.errors import ConfigError


class TestDefaults:
    def test_defaults(self):
        settings = Settings()
        assert settings.broker.backend == BrokerBackend.MEMORY
        assert settings.broker.topic == "order-events"
        assert settings.sequencer.max_buffer == 64
        assert settings.sequencer.gap_timeout_seconds == 30.0
        assert settings.retry.max_attempts == 5
        assert settings.lanes.num_lanes == 8

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "nope.toml")
        assert settings.broker.partitions == 3


class TestLoadSettings:
    def test_reads_toml(self, tmp_path):
        path = tmp_path / "orderflow.toml"
        path.write_text(
            '[broker]\nbackend = "redis"\npartitions = 6\n\n'
            "[sequencer]\nmax_buffer = 16\n"
        )
        settings = load_settings(path)
        assert settings.broker.backend == BrokerBackend.REDIS
        assert settings.broker.partitions == 6
        assert settings.sequencer.max_buffer == 16

    def test_overrides_merge_into_sections(self, tmp_path):
        path = tmp_path / "orderflow.toml"
        path.write_text('[broker]\ntopic = "orders"\npartitions = 6\n')
        settings = load_settings(path, overrides={"broker": {"partitions": 2}})
        assert settings.broker.topic == "orders"
        assert settings.broker.partitions == 2

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("ORDERFLOW_LANES__NUM_LANES", "3")
        assert Settings().lanes.num_lanes == 3


class TestValidation:
    def test_max_buffer_positive(self):
        with pytest.raises(ValidationError):
            load_settings(overrides={"sequencer": {"max_buffer": 0}})

    def test_backoff_bounds(self):
        with pytest.raises(ConfigError):
            RetryConfig(base_backoff_seconds=5.0, max_backoff_seconds=1.0)
