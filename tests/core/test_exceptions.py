"""Tests for ppclaw.core.exceptions module."""

from __future__ import annotations

import pytest

from ppclaw.core.exceptions import (
    BindingError,
    ConfigurationError,
    DiscoveryError,
    PPClawException,
    ProcessingError,
    RelayConnectionError,
    ValidationError,
)


class TestPPClawException:
    """Tests for base PPClawException."""

    def test_create_with_message(self):
        exc = PPClawException("Something went wrong")
        assert str(exc) == "Something went wrong"
        assert exc.message == "Something went wrong"
        assert exc.details == {}

    def test_to_dict_uses_class_name(self):
        exc = DiscoveryError("down", url="https://example.com/relay.json")
        d = exc.to_dict()
        assert d["error"] == "DiscoveryError"
        assert d["message"] == "down"
        assert d["details"] == {"url": "https://example.com/relay.json"}

    @pytest.mark.parametrize(
        "exc_class",
        [BindingError, ConfigurationError, DiscoveryError, ProcessingError, RelayConnectionError, ValidationError],
    )
    def test_subclasses_inherit_base(self, exc_class):
        assert issubclass(exc_class, PPClawException)


class TestSpecificErrors:
    def test_configuration_error_missing(self):
        exc = ConfigurationError("no creds", missing=["api_key", "bind_token"])
        assert exc.missing == ["api_key", "bind_token"]
        assert exc.details["missing"] == ["api_key", "bind_token"]

    def test_binding_error_keeps_body_and_status(self):
        exc = BindingError("Binding failed: nope", body="nope", status=403)
        assert exc.body == "nope"
        assert exc.status == 403
        assert exc.details == {"body": "nope", "status": 403}

    def test_relay_connection_error_is_connection_error(self):
        exc = RelayConnectionError("closed", relay_id="relay-a")
        assert isinstance(exc, ConnectionError)
        assert exc.relay_id == "relay-a"

    def test_processing_error_message_id(self):
        exc = ProcessingError("agent broke", message_id="m1")
        assert exc.details == {"message_id": "m1"}

    def test_validation_error_stringifies_value(self):
        exc = ValidationError("too big", field="content", value=200000)
        assert exc.field == "content"
        assert exc.details == {"field": "content", "value": "200000"}
