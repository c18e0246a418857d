"""
Shared error handling for the Edge Gateway.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for gateway components."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(AccessLayerException):
    """Invalid deployment configuration; raised before anything is built."""

    status_code = 500

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RequestBlockedError(AccessLayerException):
    """Source address is not on the allow-list."""

    def __init__(self, message: str = "Request blocked", details: Optional[Dict[str, Any]] = None):
        super().__init__("REQUEST_BLOCKED", message, details)


class NoRouteError(AccessLayerException):
    """No routing rule matched the request path."""

    def __init__(self, message: str = "No route matched", details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_ROUTE", message, details)


class BackendUnavailableError(AccessLayerException):
    """The selected backend set has no in-service members."""

    status_code = 503

    def __init__(self, backend_set: str, message: str = "No healthy backend members", details: Optional[Dict[str, Any]] = None):
        self.backend_set = backend_set
        super().__init__("BACKEND_UNAVAILABLE", f"{backend_set}: {message}", details)


class ExternalServiceError(AccessLayerException):
    """Upstream origin errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_GATEWAY", f"{service}: {message}", details)


class DependencyNotReadyError(AccessLayerException):
    """An upstream dependency of a service is not reachable yet."""

    status_code = 503

    def __init__(self, service: str, dependency: str, details: Optional[Dict[str, Any]] = None):
        self.service = service
        self.dependency = dependency
        super().__init__(
            "DEPENDENCY_NOT_READY",
            f"{service}: dependency '{dependency}' is not ready",
            details,
        )


class DeploymentError(AccessLayerException):
    """Blue/green deployment failed and was rolled back."""

    status_code = 500

    def __init__(self, message: str = "Deployment failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("DEPLOYMENT_FAILED", message, details)
