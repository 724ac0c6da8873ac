"""Error taxonomy for the gateway.

Auth and access errors are hard failures: they abort the request before any
other stage runs. Analysis and persistence errors are soft: they are logged and
degrade observability, but never change what the caller sees about the query.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class carrying an HTTP-equivalent status and a stable code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.detail:
            body["detail"] = self.detail
        return body


class AuthError(GatewayError):
    status_code = 401
    code = "AUTH_ERROR"


class InvalidTokenError(AuthError):
    code = "INVALID_TOKEN"


class ExpiredTokenError(AuthError):
    code = "TOKEN_EXPIRED"


class AccessDeniedError(GatewayError):
    status_code = 403
    code = "ACCESS_DENIED"


class QueryValidationError(GatewayError):
    status_code = 400
    code = "INVALID_QUERY"


class QueryTimeoutError(GatewayError):
    status_code = 408
    code = "REQUEST_TIMEOUT"


class AnalysisError(GatewayError):
    code = "ANALYSIS_FAILED"


class PersistenceError(GatewayError):
    code = "PERSISTENCE_FAILED"
