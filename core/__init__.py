"""
Core utilities and configuration for the connector manager.

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration
    security: Credential vault (encryption of connection secrets at rest)

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import AuthenticationError, ValidationError
    from core.logging import setup_logging
    from core.security import CredentialVault
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    "CredentialVault",
    # Exceptions
    "ConnectorException",
    "ValidationError",
    "SourceConnectionError",
    "AuthenticationError",
    "ConnectionTimeoutError",
    "NetworkError",
    "IntrospectionError",
    "SyncError",
    "BatchFailedError",
    "FatalSyncError",
    "ResourceNotFoundError",
    "ConflictError",
    "StateTransitionError",
    "RetryableError",
    "NonRetryableError",
]
