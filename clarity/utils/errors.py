"""Error taxonomy shared by the proxy and the client workflow.

Every failure the proxy can report is a ``ClarityError`` subclass that
knows its HTTP status, a stable machine-readable code and a default
message.  The proxy renders it as ``{"message": ..., "error": ...}`` and
the client rebuilds the same class from that body with ``from_payload``.
"""
from __future__ import annotations
from typing import Any, Dict, Optional, Type


class ClarityError(Exception):
    status_code = 500
    code = "internal_error"
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.code}


# Local validation (never sent upstream)

class ValidationError(ClarityError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class InvalidInput(ValidationError):
    code = "invalid_input"
    default_message = "Invalid input."


class InvalidAction(ValidationError):
    code = "invalid_action"
    default_message = "Invalid action."


class Unauthorized(ClarityError):
    status_code = 401
    code = "unauthorized"
    default_message = "Missing API key."


# Upstream failures

class UpstreamError(ClarityError):
    status_code = 502
    code = "upstream_error"
    default_message = "AI service unavailable."


class UpstreamTimeout(UpstreamError):
    status_code = 504
    code = "upstream_timeout"
    default_message = "AI service timed out."


class UpstreamHTTPError(UpstreamError):
    code = "upstream_http_error"

    def __init__(self, upstream_status: int, message: Optional[str] = None):
        self.upstream_status = upstream_status
        super().__init__(message or f"AI Service Unavailable: {upstream_status}")

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["upstream_status"] = self.upstream_status
        return payload


class EmptyUpstreamResponse(UpstreamError):
    code = "empty_upstream_response"
    default_message = "Empty response from AI."


class MalformedUpstreamJSON(UpstreamError):
    code = "malformed_upstream_json"
    default_message = "Failed to parse AI response."


class NetworkFailure(UpstreamError):
    code = "network_failure"
    default_message = "Could not reach the AI service."


_BY_CODE: Dict[str, Type[ClarityError]] = {
    cls.code: cls
    for cls in (
        ClarityError, ValidationError, InvalidInput, InvalidAction, Unauthorized,
        UpstreamError, UpstreamTimeout, EmptyUpstreamResponse,
        MalformedUpstreamJSON, NetworkFailure,
    )
}

_BY_STATUS: Dict[int, Type[ClarityError]] = {
    400: ValidationError,
    401: Unauthorized,
    504: UpstreamTimeout,
    502: UpstreamError,
}


def from_payload(status_code: int, body: Any) -> ClarityError:
    """Rebuild a typed error from a proxy failure response."""
    body = body if isinstance(body, dict) else {}
    message = body.get("message") if isinstance(body.get("message"), str) else None
    code = body.get("error")
    if code == UpstreamHTTPError.code:
        upstream = body.get("upstream_status")
        return UpstreamHTTPError(upstream if isinstance(upstream, int) else status_code, message)
    cls = _BY_CODE.get(code) if isinstance(code, str) else None
    if cls is None:
        cls = _BY_STATUS.get(status_code, ClarityError)
    err = cls(message)
    err.status_code = status_code
    return err
