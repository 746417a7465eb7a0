"""Tests for logging_utils module."""

from __future__ import annotations

import json

import pytest
from loguru import logger

from ws_queue.logging_utils import configure_logging, pretty


class TestPretty:
    """Test pretty function."""

    def test_dict(self):
        """Test serializing a dict."""
        assert json.loads(pretty({"a": [1, 2]})) == {"a": [1, 2]}

    def test_non_json_values_fall_back_to_str(self):
        """Test objects that JSON cannot encode natively."""
        assert json.loads(pretty({"when": object})) == {"when": str(object)}


class TestConfigureLogging:
    """Test configure_logging function."""

    def test_level_filters_messages(self, capsys: pytest.CaptureFixture[str]):
        """Messages below the configured level are dropped."""
        configure_logging("warning")
        logger.info("quiet message")
        logger.warning("loud message")
        err = capsys.readouterr().err
        assert "loud message" in err
        assert "quiet message" not in err

    def test_reconfigure_replaces_sink(self, capsys: pytest.CaptureFixture[str]):
        """Configuring twice does not duplicate output."""
        configure_logging("INFO")
        configure_logging("INFO")
        logger.info("once")
        assert capsys.readouterr().err.count("once") == 1
