"""
Error taxonomy shared by the Drive layer and the HTTP handlers.

Each error carries the HTTP status and the machine-readable ``error_code``
rendered in the ``{"ok": false, "error_code": ..., "message": ...}`` envelope.
"""

from typing import Any, Optional


class DocumentServiceError(Exception):
    status_code = 500
    error_code = "UNEXPECTED"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def to_payload(self) -> dict:
        return {"ok": False, "error_code": self.error_code, "message": self.message}


class ConfigurationError(DocumentServiceError):
    """Missing or invalid credentials/settings. Fatal, never retried."""

    status_code = 500
    error_code = "CONFIGURATION_ERROR"


class PrivateKeyInvalid(ConfigurationError):
    error_code = "PRIVATE_KEY_INVALID"


class UpstreamError(DocumentServiceError):
    """
    Non-2xx answer from a Google endpoint.

    ``status`` and ``body`` are the upstream values, kept verbatim so operators
    can see exactly what Google returned.
    """

    status_code = 502
    error_code = "UPSTREAM_ERROR"

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None,
                 error_code: Optional[str] = None):
        detail = message
        if status is not None:
            detail = f"{message} (HTTP {status})"
        if body:
            detail = f"{detail}: {body}"
        super().__init__(detail, error_code=error_code)
        self.status = status
        self.body = body


class TokenExchangeError(UpstreamError):
    error_code = "TOKEN_EXCHANGE_FAILED"


class NotFound(DocumentServiceError):
    status_code = 404
    error_code = "NOT_FOUND"


class ValidationError(DocumentServiceError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class PayloadTooLarge(ValidationError):
    status_code = 413
    error_code = "PAYLOAD_TOO_LARGE"
