"""
Unit tests for structlog configuration
"""

import json

import pytest
import structlog

from shared.utils.logging import configure_logging


class TestConfigureLogging:
    """Tests for process logging setup"""

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_json_output(self, capsys):
        configure_logging("INFO", "json")
        logger = structlog.get_logger("test")

        logger.info("salesforce_query_failed", status_code=400)

        event = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert event["event"] == "salesforce_query_failed"
        assert event["status_code"] == 400
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filtering(self, capsys):
        configure_logging("WARNING", "json")
        logger = structlog.get_logger("test")

        logger.info("crm_adapter_created")
        logger.warning("fsc_error_unmatched")

        out = capsys.readouterr().out
        assert "crm_adapter_created" not in out
        assert "fsc_error_unmatched" in out
