"""Tests for log masking."""

import logging

import pytest

from common.logging_config import SensitiveDataFilter, setup_logging


def masked(message, *args):
    record = logging.LogRecord("gateway", logging.INFO, __file__, 1, message, args or None, None)
    SensitiveDataFilter().filter(record)
    return record.getMessage()


class TestSensitiveDataFilter:
    """Test that credentials never reach the log output."""

    def test_bot_token_in_url(self):
        line = masked("GET https://api.telegram.org/bot123456:AAH-x_9/getFile failed")
        assert "123456:AAH-x_9" not in line
        assert "/bot***MASKED***/getFile" in line

    def test_webhook_token(self):
        line = masked("POST https://discord.com/api/webhooks/998877/s3cr3t-T0ken returned 500")
        assert "s3cr3t-T0ken" not in line
        assert "/webhooks/998877/***MASKED***" in line

    def test_authorization_header(self):
        line = masked("headers: Authorization: Basic YWRtaW46cHc=")
        assert "YWRtaW46cHc=" not in line

    def test_bearer_token(self):
        assert "hf_abc" not in masked("sending Bearer hf_abc")
        assert "bot-secret" not in masked("Authorization header Bot bot-secret")
        assert masked("the robot arm") == "the robot arm"

    def test_arguments_are_masked(self):
        assert "hunter2" not in masked("login with %s", "password=hunter2")

    @pytest.mark.parametrize("message", ["Uploaded to r2 [key=r2_abc.png, size=10]", "Purged 3 expired KV entries"])
    def test_ordinary_messages_untouched(self, message):
        assert masked(message) == message


def test_setup_logging_is_idempotent():
    logger = setup_logging("gateway-test-logging", log_level="DEBUG")
    assert logger.level == logging.DEBUG

    again = setup_logging("gateway-test-logging")

    assert logger is again
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].filters[0], SensitiveDataFilter)
