# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Custom exception hierarchy for the ppclaw connector.

Fatal errors (configuration, binding) abort startup. Discovery and
connection errors are recoverable and only ever feed the reconnect
backoff. Processing and validation errors are scoped to a single
message or tool call.
"""

from __future__ import annotations

from typing import Any


class PPClawException(Exception):  # noqa: N818
    """Base exception for all connector errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PPClawException):
    """Raised when neither an api key nor a bind token is configured.

    This is a startup precondition; there is no recovery path.
    """

    def __init__(self, message: str, missing: list[str] | None = None):
        details = {}
        if missing:
            details["missing"] = missing
        super().__init__(message, details)
        self.missing = missing or []


class BindingError(PPClawException):
    """Raised when the relay rejects the bind token exchange."""

    def __init__(self, message: str, body: Any = None, status: int | None = None):
        details: dict[str, Any] = {}
        if body is not None:
            details["body"] = body
        if status is not None:
            details["status"] = status
        super().__init__(message, details)
        self.body = body
        self.status = status


class DiscoveryError(PPClawException):
    """Raised when the discovery endpoint is unreachable or malformed."""

    def __init__(self, message: str, url: str | None = None):
        details = {}
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.url = url


class RelayConnectionError(PPClawException, ConnectionError):
    """Raised when a relay WebSocket cannot be opened or drops abnormally."""

    def __init__(self, message: str, relay_id: str | None = None):
        details = {}
        if relay_id:
            details["relay_id"] = relay_id
        super().__init__(message, details)
        self.relay_id = relay_id


class ProcessingError(PPClawException):
    """Raised when the agent fails to process a single inbound message."""

    def __init__(self, message: str, message_id: str | None = None):
        details = {}
        if message_id:
            details["message_id"] = message_id
        super().__init__(message, details)
        self.message_id = message_id


class ValidationError(PPClawException):
    """Raised at the storage boundary for malformed keys or oversized content."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value
