"""
Custom exceptions for the connector manager with structured error context.

Every exception carries a human-readable message, a context dictionary and
the original exception (if any). The API layer renders them as
``{"error": <error_code>, "message": <message>}`` with ``http_status``.

Exception Hierarchy:
    ConnectorException (base)
    ├── ValidationError
    ├── SourceConnectionError
    │   ├── AuthenticationError
    │   ├── ConnectionTimeoutError
    │   ├── RefusedConnectionError
    │   ├── HostNotFoundError
    │   ├── SSLError
    │   ├── PermissionDeniedError
    │   ├── SourceNotFoundError
    │   ├── InvalidConfigurationError
    │   └── NetworkError
    ├── IntrospectionError
    ├── SyncError
    │   ├── BatchFailedError
    │   └── FatalSyncError
    ├── ResourceNotFoundError
    ├── ConflictError
    │   └── StateTransitionError
    ├── CredentialError
    └── RetryableError / NonRetryableError (mixins)
"""

import enum
from typing import Optional, Dict, Any
from datetime import datetime


class ConnectorException(Exception):
    """
    Base exception for all connector-manager errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (data source, operation, etc.)
        original_exception: The original exception that was caught (if any)
    """

    error_code = "ConnectorError"
    http_status = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }

    def to_payload(self) -> Dict[str, str]:
        """Structured payload returned to API callers."""
        return {"error": self.error_code, "message": self.message}


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ConnectorException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 503)
    """


class NonRetryableError(ConnectorException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Invalid configuration
    - Resource not found (HTTP 404)
    """


# ============================================================================
# Validation
# ============================================================================

class ValidationError(NonRetryableError):
    """
    Missing or malformed configuration, rejected before any network call.

    Context should include:
        - field_errors: mapping of field name to problem
        - source_type: data source type being validated
    """

    error_code = "ValidationError"
    http_status = 400


# ============================================================================
# Connection Errors
# ============================================================================

class ConnectionErrorKind(str, enum.Enum):
    """Classification of connection failures, used as message prefix"""
    AUTH = "auth"
    TIMEOUT = "timeout"
    REFUSED = "refused"
    HOST_NOT_FOUND = "host_not_found"
    SSL = "ssl"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    NETWORK = "network"
    INVALID_CONFIGURATION = "invalid_configuration"
    UNKNOWN = "unknown"


class SourceConnectionError(ConnectorException):
    """
    Failure talking to an external data source.

    ``round_trip`` is True when the server answered before the failure
    (e.g. an auth rejection), which makes the elapsed time meaningful.
    """

    error_code = "ConnectionError"
    http_status = 502
    kind = ConnectionErrorKind.UNKNOWN
    round_trip = False

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        round_trip: Optional[bool] = None
    ):
        super().__init__(message, context, original_exception)
        if round_trip is not None:
            self.round_trip = round_trip

    @property
    def public_message(self) -> str:
        """Stable ``<kind>: <detail>`` message shape shown to operators."""
        if self.kind == ConnectionErrorKind.TIMEOUT:
            return "timeout"
        return f"{self.kind.value}: {self.message}"


class AuthenticationError(NonRetryableError, SourceConnectionError):
    """Credentials rejected (HTTP 401/403, SQLSTATE 28xxx, Mongo code 18)."""
    kind = ConnectionErrorKind.AUTH
    round_trip = True


class PermissionDeniedError(NonRetryableError, SourceConnectionError):
    """Authenticated but not authorized for the requested resource."""
    kind = ConnectionErrorKind.PERMISSION_DENIED
    round_trip = True


class SourceNotFoundError(NonRetryableError, SourceConnectionError):
    """Database, bucket, sheet, file or endpoint does not exist."""
    kind = ConnectionErrorKind.NOT_FOUND
    round_trip = True


class InvalidConfigurationError(NonRetryableError, SourceConnectionError):
    """Configuration is well-formed but rejected by the source."""
    kind = ConnectionErrorKind.INVALID_CONFIGURATION


class ConnectionTimeoutError(RetryableError, SourceConnectionError):
    """No answer within the allotted time."""
    kind = ConnectionErrorKind.TIMEOUT


class RefusedConnectionError(RetryableError, SourceConnectionError):
    """TCP connection refused."""
    kind = ConnectionErrorKind.REFUSED


class HostNotFoundError(NonRetryableError, SourceConnectionError):
    """DNS resolution failed."""
    kind = ConnectionErrorKind.HOST_NOT_FOUND


class SSLError(NonRetryableError, SourceConnectionError):
    """TLS negotiation failed."""
    kind = ConnectionErrorKind.SSL


class NetworkError(RetryableError, SourceConnectionError):
    """Transient network or server-side failure (5xx, 429, resets)."""
    kind = ConnectionErrorKind.NETWORK


# ============================================================================
# Introspection / Sync Errors
# ============================================================================

class IntrospectionError(ConnectorException):
    """
    Schema discovery failed after connecting. Never changes the status.

    Context should include:
        - data_source_id
        - stage: which catalog query failed
    """

    error_code = "IntrospectionError"
    http_status = 502


class SyncError(ConnectorException):
    """Base exception for synchronization failures."""

    error_code = "SyncError"
    http_status = 502


class BatchFailedError(SyncError):
    """
    A batch could not be pulled after exhausting its attempts.

    Context should include:
        - batch_number
        - attempts
        - cursor
    """


class FatalSyncError(SyncError):
    """Auth loss or repeated batch failures; aborts the run."""


# ============================================================================
# Resource / State Errors
# ============================================================================

class ResourceNotFoundError(NonRetryableError):
    """Requested data source does not exist."""

    error_code = "NotFound"
    http_status = 404


class ConflictError(NonRetryableError):
    """Operation conflicts with in-flight work (e.g. delete during sync)."""

    error_code = "Conflict"
    http_status = 409


class StateTransitionError(ConflictError):
    """
    Illegal lifecycle transition.

    Context should include:
        - current_status
        - requested_status
    """

    error_code = "InvalidStateTransition"


class CredentialError(NonRetryableError):
    """Stored credentials cannot be decrypted (key rotated or corrupted)."""

    error_code = "CredentialError"
    http_status = 500
