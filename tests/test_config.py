"""
Tests for environment settings and construction-argument validation.
"""

import logging

import pytest

from livepersist.config import (
    RootConfig,
    Settings,
    ValidationSeverity,
    get_settings,
    validate_root_config,
)
from livepersist.core.json_utils import JsonCodec
from livepersist.errors import ValidationError


class TestSettings:

    def test_defaults(self):
        settings = Settings.load(dotenv=False)

        assert settings.delay == 0.0
        assert settings.depth == 0
        assert settings.log_level == logging.INFO
        assert settings.log_file is None
        assert settings.fsync is False

    def test_from_environment(self, monkeypatch, tmp_path):
        log_file = str(tmp_path / "persist.log")
        monkeypatch.setenv("LIVEPERSIST_DELAY", "1.5")
        monkeypatch.setenv("LIVEPERSIST_DEPTH", "2")
        monkeypatch.setenv("LIVEPERSIST_LOG_LEVEL", "debug")
        monkeypatch.setenv("LIVEPERSIST_LOG_FILE", log_file)
        monkeypatch.setenv("LIVEPERSIST_FSYNC", "yes")

        settings = Settings.load(dotenv=False)

        assert settings.delay == 1.5
        assert settings.depth == 2
        assert settings.log_level == logging.DEBUG
        assert settings.log_file == log_file
        assert settings.fsync is True

    def test_unknown_log_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("LIVEPERSIST_LOG_LEVEL", "chatty")
        assert Settings.load(dotenv=False).log_level == logging.INFO

    @pytest.mark.parametrize("key, raw, field", [
        ("LIVEPERSIST_DEPTH", "-1", "depth"),
        ("LIVEPERSIST_DEPTH", "1.5", "depth"),
        ("LIVEPERSIST_DELAY", "soon", "delay"),
        ("LIVEPERSIST_DELAY", "-2", "delay"),
        ("LIVEPERSIST_DELAY", "nan", "delay"),
        ("LIVEPERSIST_DELAY", "inf", "delay"),
    ])
    def test_invalid_environment_values(self, monkeypatch, key, raw, field):
        monkeypatch.setenv(key, raw)

        with pytest.raises(ValidationError) as exc_info:
            Settings.load(dotenv=False)

        assert exc_info.value.field == field

    def test_get_settings_is_cached(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("LIVEPERSIST_DEPTH", "9")
        assert get_settings() is first

        get_settings.cache_clear()
        assert get_settings().depth == 9

    def test_dump(self):
        dumped = Settings.load(dotenv=False).dump()
        assert set(dumped) == {"delay", "depth", "log_level", "log_file", "fsync"}


class TestValidateRootConfig:

    def test_valid_config(self):
        result = validate_root_config(
            RootConfig(path="a.json", depth=2, default={"x": [1]}, on_saved=lambda e, v: None, delay=0.1),
            encode=JsonCodec().encode,
        )
        assert result.valid
        assert result.issues == []

    def test_all_errors_collected(self):
        result = validate_root_config(RootConfig(path="", depth=-1, default="x", on_saved=1, delay="1"))

        assert {issue.field for issue in result.get_errors()} == {"path", "depth", "default", "on_saved", "delay"}

    def test_raise_for_errors_names_first_field(self):
        result = validate_root_config(RootConfig(path="a.json", depth=-3, delay=-1))

        with pytest.raises(ValidationError) as exc_info:
            result.raise_for_errors()
        assert exc_info.value.field == "depth"
        assert exc_info.value.value == -3

    @pytest.mark.parametrize("depth, delay", [
        (float("nan"), None),
        (float("inf"), None),
        (None, float("nan")),
        (None, float("inf")),
    ])
    def test_non_finite_numbers_are_errors(self, depth, delay):
        result = validate_root_config(RootConfig(path="a.json", depth=depth, delay=delay))

        assert [issue.field for issue in result.get_errors()] == ["depth" if depth is not None else "delay"]

    def test_fractional_depth_is_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="livepersist"):
            result = validate_root_config(RootConfig(path="a.json", depth=1.5))

        assert result.valid
        assert [issue.severity for issue in result.issues] == [ValidationSeverity.WARNING]

    def test_default_checked_with_codec_only_when_given(self):
        config = RootConfig(path="a.json", default={"bad": object()})

        assert validate_root_config(config).valid
        assert not validate_root_config(config, encode=JsonCodec().encode).valid
