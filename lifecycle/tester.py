"""
Connection tester: validate, decrypt, handshake under a timeout.

The tester itself never touches the database; DataSourceManager wraps it
with the TESTING transition before and the result recording after.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from connectors.base import ConnectionTestResult, Connector, LatencyProbe
from connectors.config import CONNECTION_FIELDS, BaseConnectionConfig, build_connection_config
from connectors.registry import ConnectorResolver, get_connector
from core.config import Settings, settings as default_settings
from core.exceptions import (
    ConnectionErrorKind,
    ConnectorException,
    SourceConnectionError,
    ValidationError,
)
from core.security import CredentialVault
from models.base import DataSourceType
from models.data_source import DataSource

logger = logging.getLogger(__name__)


@dataclass
class PreparedCall:
    """Everything a connector call needs, detached from the ORM row"""
    data_source_id: str
    source_type: DataSourceType
    connector: Connector
    config: BaseConnectionConfig
    timeout: float


class ConnectionTester:
    """
    Runs connection tests.

    Attributes:
        vault: Credential vault used to decrypt secrets per call
        resolver: Maps a source type to its connector
    """

    def __init__(
        self,
        vault: CredentialVault,
        resolver: ConnectorResolver = get_connector,
        settings: Settings = default_settings
    ):
        self.vault = vault
        self.resolver = resolver
        self.settings = settings

    def build_config(self, source: DataSource) -> BaseConnectionConfig:
        """
        Assemble a validated, decrypted config for one call.

        Raises:
            ValidationError: required fields missing or malformed
            CredentialError: stored secrets cannot be decrypted
        """
        source_type = DataSourceType(source.type)
        fields = {name: getattr(source, name) for name in CONNECTION_FIELDS}
        secrets = self.vault.decrypt(source.encrypted_credentials)
        return build_connection_config(source_type, fields, secrets, source.configuration)

    def timeout_for(
        self,
        source_type: DataSourceType,
        config: BaseConnectionConfig,
        override: Optional[float] = None
    ) -> float:
        """Per-call override, then per-source configuration, then per-type setting"""
        if override is not None:
            if override <= 0:
                raise ValidationError("timeout must be positive", context={"timeout": override})
            return float(override)
        if config.timeout_override:
            return config.timeout_override
        return self.settings.test_timeout_for(source_type.value)

    def prepare(self, source: DataSource, timeout: Optional[float] = None) -> PreparedCall:
        source_type = DataSourceType(source.type)
        config = self.build_config(source)
        return PreparedCall(
            data_source_id=source.id,
            source_type=source_type,
            connector=self.resolver(source_type),
            config=config,
            timeout=self.timeout_for(source_type, config, timeout),
        )

    async def execute(self, call: PreparedCall) -> ConnectionTestResult:
        """
        Perform the handshake. Never raises for connection failures;
        cancellation propagates to the caller.
        """
        probe = LatencyProbe()
        probe.start()

        try:
            server_info = await asyncio.wait_for(
                call.connector.test_connection(call.config, probe),
                timeout=call.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Connection test for {call.data_source_id} timed out after {call.timeout}s")
            return ConnectionTestResult(
                success=False,
                message="timeout",
                response_time=_round(probe.round_trip_ms),
                error_type=ConnectionErrorKind.TIMEOUT.value,
            )
        except Exception as e:
            return self._failure(call, probe, call.connector.classify_error(e))

        response_time = probe.round_trip_ms if probe.round_trip_ms is not None else probe.elapsed_ms
        logger.info(f"Connection test for {call.data_source_id} succeeded in {response_time:.1f}ms")
        return ConnectionTestResult(
            success=True,
            message="Connection successful",
            response_time=_round(response_time),
            server_info=server_info or {},
        )

    def _failure(
        self,
        call: PreparedCall,
        probe: LatencyProbe,
        error: ConnectorException
    ) -> ConnectionTestResult:
        if isinstance(error, SourceConnectionError):
            kind = error.kind
            message = error.public_message
            round_trip = error.round_trip
        elif isinstance(error, ValidationError):
            kind = ConnectionErrorKind.INVALID_CONFIGURATION
            message = f"{kind.value}: {error.message}"
            round_trip = False
        else:
            kind = ConnectionErrorKind.UNKNOWN
            message = f"{kind.value}: {error.message}"
            round_trip = False

        response_time = probe.round_trip_ms
        if response_time is None and round_trip:
            response_time = probe.elapsed_ms

        logger.warning(
            f"Connection test for {call.data_source_id} failed: {message}",
            extra={"error_context": error.to_dict()}
        )
        return ConnectionTestResult(
            success=False,
            message=message,
            response_time=_round(response_time),
            error_type=kind.value,
        )


def _round(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None
