"""Tests for flowtrack/config.py"""

import json
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError


class TestTrackingConfig:
    """Tests for TrackingConfig class."""

    def test_defaults(self, monkeypatch):
        for var in (
            "FLOWTRACK_RECEIPT_TOLERANCE", "FLOWTRACK_DEFAULT_UNIT", "FLOWTRACK_DB_PATH", "FLOWTRACK_LOG_LEVEL"
        ):
            monkeypatch.delenv(var, raising=False)
        from flowtrack.config import TrackingConfig

        config = TrackingConfig(_env_file=None)

        assert config.receipt_tolerance == Decimal("0.01")
        assert config.default_unit == "KG"
        assert config.db_path == Path("data/flowtrack.db")
        assert config.log_level == "INFO"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FLOWTRACK_RECEIPT_TOLERANCE", "0.5")
        monkeypatch.setenv("FLOWTRACK_DEFAULT_UNIT", "M")
        from flowtrack.config import TrackingConfig

        config = TrackingConfig(_env_file=None)

        assert config.receipt_tolerance == Decimal("0.5")
        assert config.default_unit == "M"

    def test_negative_tolerance_rejected(self):
        from flowtrack.config import TrackingConfig

        with pytest.raises(ValidationError):
            TrackingConfig(_env_file=None, receipt_tolerance=Decimal("-1"))

    def test_log_level_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWTRACK_LOG_LEVEL", "debug")
        from flowtrack.config import TrackingConfig

        assert TrackingConfig(_env_file=None).log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        from flowtrack.config import TrackingConfig

        with pytest.raises(ValidationError, match="Unknown log level"):
            TrackingConfig(_env_file=None, log_level="VERBOSE")


class TestBottleneckConfig:
    """Tests for BottleneckConfig class."""

    def test_defaults(self, bottleneck_config):
        assert bottleneck_config.yield_weight == 0.4
        assert bottleneck_config.loss_weight == 0.3
        assert bottleneck_config.time_weight == 0.3
        assert bottleneck_config.yield_deficit_band == 30.0
        assert bottleneck_config.loss_band == 20.0
        assert bottleneck_config.expected_processing_hours == 4.0
        assert bottleneck_config.worst_processing_hours == 12.0
        assert bottleneck_config.critical_threshold == 70.0
        assert bottleneck_config.moderate_threshold == 40.0

    def test_weights_must_sum_to_one(self):
        from flowtrack.config import BottleneckConfig

        with pytest.raises(ValidationError, match="sum to 1.0"):
            BottleneckConfig(_env_file=None, yield_weight=0.5, loss_weight=0.5, time_weight=0.5)

    def test_worst_hours_must_exceed_expected(self):
        from flowtrack.config import BottleneckConfig

        with pytest.raises(ValidationError):
            BottleneckConfig(_env_file=None, expected_processing_hours=8, worst_processing_hours=6)

    def test_thresholds_ordered(self):
        from flowtrack.config import BottleneckConfig

        with pytest.raises(ValidationError):
            BottleneckConfig(_env_file=None, critical_threshold=30, moderate_threshold=50)

    def test_load_from_json(self, tmp_path):
        """Test loading the bottleneck section of a JSON file."""
        config_file = tmp_path / "flowtrack_config.json"
        config_file.write_text(
            json.dumps(
                {
                    "bottleneck": {
                        "yield_weight": 0.5,
                        "loss_weight": 0.25,
                        "time_weight": 0.25,
                        "loss_band": 10,
                    }
                }
            )
        )
        from flowtrack.config import BottleneckConfig

        config = BottleneckConfig.load(str(config_file))

        assert config.yield_weight == 0.5
        assert config.loss_band == 10.0
        assert config.yield_deficit_band == 30.0

    def test_load_missing_file_uses_defaults(self, tmp_path):
        from flowtrack.config import BottleneckConfig

        config = BottleneckConfig.load(str(tmp_path / "missing.json"))

        assert config.critical_threshold == 70.0


class TestConfig:
    """Tests for the Config factory."""

    def test_db_path_comes_from_tracking(self, test_config, temp_db_path):
        assert test_config.db_path == temp_db_path

    def test_load_reads_bottleneck_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FLOWTRACK_DB_PATH", raising=False)
        config_file = tmp_path / "custom.json"
        config_file.write_text(json.dumps({"bottleneck": {"critical_threshold": 80}}))
        from flowtrack.config import Config

        config = Config.load(str(config_file))

        assert config.bottleneck.critical_threshold == 80.0
        assert config.tracking.default_unit

    def test_get_config_is_cached(self):
        from flowtrack.config import get_config

        get_config.cache_clear()
        try:
            assert get_config() is get_config()
        finally:
            get_config.cache_clear()
