"""
Error taxonomy for the optimizer service.

    OptimizerError (base)
    ├── ValidationError   400  missing or malformed request fields
    ├── ConfigError       500  server-side credential/config missing
    ├── NotFoundError     404  no transcript for a user id, no job record
    └── UpstreamError     502  Voiceflow/Anthropic returned a non-success status
        └── ParseError    502  model output could not be turned into a recommendation

Route handlers translate these into responses. Inside the background pipeline
they are never raised to a caller; they end up in the job record instead.
"""

from typing import Any, Dict, Optional


class OptimizerError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ValidationError(OptimizerError):
    status_code = 400


class ConfigError(OptimizerError):
    status_code = 500

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        super().__init__(message, {"config_key": config_key} if config_key else None)


class NotFoundError(OptimizerError):
    status_code = 404


class UpstreamError(OptimizerError):
    """Non-success response from an outbound collaborator."""

    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        body: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.upstream_status = upstream_status
        self.body = body
        merged = dict(details or {})
        if upstream_status is not None:
            merged["upstream_status"] = upstream_status
        super().__init__(message, merged)


class ParseError(UpstreamError):
    """The model answered, but not with a usable recommendation."""

    def __init__(self, message: str, raw_output: str = "", reason: str = ""):
        self.raw_output = raw_output
        self.reason = reason
        super().__init__(message, details={"reason": reason} if reason else None)
