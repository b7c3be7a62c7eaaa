"""
Tests for error capture, log redaction and the exception taxonomy.
"""

import pytest
import structlog
from unittest.mock import patch

from beatgen.core import error_tracking
from beatgen.core.error_tracking import _scrub_event, capture_exception, capture_message, init_sentry
from beatgen.core.errors import (
    BeatgenError,
    CircuitOpenError,
    CredentialNotFoundError,
    CredentialRejectedError,
    ProviderError,
    QuotaExceededError,
)
from beatgen.core.logging_config import redact_secrets


class TestTaxonomy:
    def test_credential_errors_are_provider_errors(self):
        assert issubclass(CredentialRejectedError, ProviderError)
        assert issubclass(QuotaExceededError, ProviderError)
        assert issubclass(ProviderError, BeatgenError)

    def test_not_found_is_key_error(self):
        err = CredentialNotFoundError(42)

        assert isinstance(err, KeyError)
        assert str(err) == "Credential not found: 42"

    def test_circuit_open_message(self):
        assert str(CircuitOpenError("ConceptService")) == "Circuit breaker is OPEN for ConceptService"


class TestCapture:
    def test_init_without_dsn_is_disabled(self):
        assert init_sentry("") is False

    def test_capture_exception_logs_with_context(self):
        with patch.object(error_tracking, "logger") as logger, structlog.contextvars.bound_contextvars(run_id="abc123"):
            event_id = capture_exception(ValueError("bad"), context={"template_id": 3})

        assert event_id is None
        kwargs = logger.error.call_args.kwargs
        assert kwargs["run_id"] == "abc123"
        assert kwargs["template_id"] == 3
        assert kwargs["error_type"] == "ValueError"

    def test_capture_message_uses_level(self):
        with patch.object(error_tracking, "logger") as logger:
            capture_message("Circuit MusicService opened", level="warning", context={"circuit": "MusicService"})

        logger.warning.assert_called_once()
        assert logger.warning.call_args.args[0] == "Circuit MusicService opened"

    def test_scrub_event_filters_secrets(self):
        event = {"extra": {"secret": "sk-live-123456789", "template_id": 3}}

        scrubbed = _scrub_event(event, {})

        assert scrubbed["extra"] == {"secret": "[Filtered]", "template_id": 3}


class TestRedaction:
    @pytest.mark.parametrize("key", ["secret", "api_key", "authorization"])
    def test_raw_secret_masked(self, key):
        event = redact_secrets(None, "info", {"event": "x", key: "sk-live-123456789"})
        assert event[key] == "sk-l..."

    def test_already_masked_left_alone(self):
        event = redact_secrets(None, "info", {"event": "x", "secret": "sk-live-...6789"})
        assert event["secret"] == "sk-live-...6789"

    def test_other_keys_untouched(self):
        event = redact_secrets(None, "info", {"event": "x", "credential_id": 4})
        assert event == {"event": "x", "credential_id": 4}
