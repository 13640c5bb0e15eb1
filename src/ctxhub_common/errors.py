from __future__ import annotations

from typing import Any

REDACT_TOKEN = "***redacted***"


class ContextHubError(Exception):
    """Base class for failures that cross a protocol boundary as structured results."""

    code = "internal"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class MalformedMessage(ContextHubError):
    """Envelope failed structural validation; it is never dispatched."""

    code = "malformed_message"


class UnsupportedService(ContextHubError):
    code = "unsupported_service"


class NotFound(ContextHubError):
    """Unknown connection, resource locator or tool name."""

    code = "not_found"


class InvalidArgument(ContextHubError):
    code = "invalid_argument"


class AuthenticationFailed(ContextHubError):
    """Backend session could not be established. Not retried."""

    code = "authentication_failed"


class Forbidden(ContextHubError):
    code = "forbidden"


class UpstreamError(ContextHubError):
    """A backend call failed; the message is the backend's own."""

    code = "upstream_error"


def typed_error(code: str, message: str, *, details: dict | None = None, **extra: Any) -> dict:
    """
    Standard error envelope:
      {"error": {"code": code, "message": message, "details": {...}}, ...extra}
    """
    err: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        err["error"]["details"] = details
    if extra:
        err.update(extra)
    return err


def error_payload(exc: BaseException, **extra: Any) -> dict:
    """Convert an exception to the standard error envelope, keeping taxonomy codes."""
    if isinstance(exc, ContextHubError):
        return typed_error(exc.code, exc.message, details=exc.details or None, **extra)
    return typed_error("internal", str(exc), **extra)
