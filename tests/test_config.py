"""Tests for configuration loading, validation and logging setup."""

import logging

import pytest

from session_boundary.utils.config import (
    get_bool_env_var,
    get_env_var,
    get_float_env_var,
    get_int_env_var,
    load_env_file,
    load_config,
)
from session_boundary.utils.config_validator import (
    DetectionConfig,
    LoggingConfig,
    validate_config,
)
from session_boundary.utils.logging import setup_logging


class TestLoadConfig:
    """Test configuration loading and defaults."""

    def test_sections(self):
        config = load_config()

        assert set(config) == {"detection", "logging"}
        assert config["detection"]["boundary_threshold"] == 0.7
        assert config["logging"]["level"] == "INFO"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SESSION_BOUNDARY_DETECTION_IDLE_THRESHOLD", "900000")
        monkeypatch.setenv("SESSION_BOUNDARY_DETECTION_LEARNING_ENABLED", "false")

        detection = load_config()["detection"]
        assert detection["idle_threshold"] == 900_000
        assert detection["learning_enabled"] is False

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("SESSION_BOUNDARY_DETECTION_BOUNDARY_THRESHOLD", "1.5")

        with pytest.raises(ValueError, match="Configuration validation failed"):
            load_config()

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("SESSION_BOUNDARY_LOGGING_LEVEL", "CHATTY")

        with pytest.raises(ValueError):
            load_config()


class TestDetectionConfig:
    """Test pydantic field constraints."""

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            DetectionConfig(idle_treshold=1)

    def test_merged_returns_new_instance(self):
        base = DetectionConfig()
        merged = base.merged({"boundary_threshold": 0.9})

        assert merged.boundary_threshold == 0.9
        assert base.boundary_threshold == 0.7

    def test_empty_log_format_rejected(self):
        with pytest.raises(ValueError):
            LoggingConfig(format="  ")


class TestValidateConfig:
    """Test errors, warnings and recommendations."""

    def test_defaults_are_clean(self):
        result = validate_config(DetectionConfig())
        assert result.is_valid
        assert result.warnings == []

    def test_partial_errors(self):
        result = validate_config({"boundary_threshold": 2.0})

        assert not result.is_valid
        assert result.errors[0].startswith("boundary_threshold:")

    def test_partial_applied_to_base(self):
        base = DetectionConfig(idle_threshold=60_000, session_gap_threshold=30_000)
        result = validate_config({"session_gap_threshold": 120_000}, base=base)

        assert result.is_valid
        assert "Session gap threshold exceeds idle threshold" in result.warnings

    def test_warnings_and_recommendations(self):
        result = validate_config(
            {
                "idle_threshold": 60_000,
                "adaptation_rate": 0.5,
                "boundary_threshold": 0.1,
                "learning_enabled": False,
                "batch_size": 5000,
            }
        )

        assert len(result.warnings) == 4
        assert "Enable learning to let thresholds adapt to this user" in result.recommendations
        assert result.to_dict()["is_valid"] is True


class TestEnvHelpers:
    """Test typed environment variable helpers."""

    def test_get_env_var(self, monkeypatch):
        monkeypatch.delenv("SB_TEST_VAR", raising=False)
        assert get_env_var("SB_TEST_VAR", "fallback") == "fallback"

        monkeypatch.setenv("SB_TEST_VAR", "")
        assert get_env_var("SB_TEST_VAR", "fallback") == "fallback"

        monkeypatch.setenv("SB_TEST_VAR", "set")
        assert get_env_var("SB_TEST_VAR", "fallback") == "set"

    @pytest.mark.parametrize("raw,expected", [("TRUE", True), ("on", True), ("0", False), ("No", False)])
    def test_get_bool_env_var(self, monkeypatch, raw, expected):
        monkeypatch.setenv("SB_TEST_BOOL", raw)
        assert get_bool_env_var("SB_TEST_BOOL", not expected) is expected

    def test_get_bool_env_var_default(self, monkeypatch):
        monkeypatch.delenv("SB_TEST_BOOL", raising=False)
        assert get_bool_env_var("SB_TEST_BOOL", True) is True

    def test_numeric_helpers(self, monkeypatch):
        monkeypatch.setenv("SB_TEST_INT", "42")
        monkeypatch.setenv("SB_TEST_FLOAT", "0.25")
        monkeypatch.delenv("SB_TEST_MISSING", raising=False)

        assert get_int_env_var("SB_TEST_INT") == 42
        assert get_float_env_var("SB_TEST_FLOAT") == 0.25
        assert get_int_env_var("SB_TEST_MISSING", 7) == 7

    def test_numeric_helpers_invalid(self, monkeypatch):
        monkeypatch.setenv("SB_TEST_INT", "many")
        with pytest.raises(ValueError):
            get_int_env_var("SB_TEST_INT")


class TestSetupLogging:
    """Test logging initialization."""

    def test_file_handler_created(self, tmp_path):
        config = {"logging": {"level": "DEBUG", "format": "%(message)s", "log_dir": str(tmp_path / "logs")}}
        root = logging.getLogger()
        before = list(root.handlers)
        try:
            logger = setup_logging(config)
            assert logger.name == "session_boundary"
            assert (tmp_path / "logs" / "session_boundary.log").exists()
        finally:
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()


class TestEnvFile:
    """Test .env loading."""

    def test_missing_file(self, tmp_path):
        assert load_env_file(tmp_path / ".env") is False

    def test_file_loaded_without_overriding(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("SB_TEST_FROM_FILE=file\nSB_TEST_PRESET=file\n")
        monkeypatch.delenv("SB_TEST_FROM_FILE", raising=False)
        monkeypatch.setenv("SB_TEST_PRESET", "process")

        assert load_env_file(env_file) is True
        assert get_env_var("SB_TEST_FROM_FILE") == "file"
        assert get_env_var("SB_TEST_PRESET") == "process"

    def test_unrecognized_bool(self, monkeypatch):
        monkeypatch.setenv("SB_TEST_BOOL", "maybe")
        with pytest.raises(ValueError, match="not a boolean"):
            get_bool_env_var("SB_TEST_BOOL")
