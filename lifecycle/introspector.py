"""
Schema introspection with bounded output.

Failures never propagate and never change a data source's status: they
degrade to an empty, truncated result that carries the error text.
"""

import asyncio
import logging
from typing import Union

from connectors.base import SchemaLimits, SchemaResult, Unsupported, apply_schema_limits
from core.config import Settings, settings as default_settings
from core.exceptions import IntrospectionError, SourceConnectionError
from lifecycle.tester import PreparedCall

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    @property
    def limits(self) -> SchemaLimits:
        return SchemaLimits(
            max_tables=self.settings.SCHEMA_MAX_TABLES,
            max_columns=self.settings.SCHEMA_MAX_COLUMNS,
        )

    async def introspect(self, call: PreparedCall) -> Union[SchemaResult, Unsupported]:
        connector = call.connector
        if not connector.supports_introspection:
            return Unsupported(source_type=call.source_type)

        limits = self.limits
        try:
            result = await asyncio.wait_for(
                connector.introspect_schema(call.config, limits),
                timeout=self.settings.SCHEMA_TIMEOUT
            )
        except asyncio.TimeoutError:
            return self._degraded(call, IntrospectionError("timeout"))
        except Exception as e:
            classified = connector.classify_error(e)
            message = classified.public_message if isinstance(classified, SourceConnectionError) else classified.message
            return self._degraded(
                call,
                IntrospectionError(message, context={"data_source_id": call.data_source_id}, original_exception=e)
            )

        if isinstance(result, Unsupported):
            return result

        # Connectors cap themselves; enforce it regardless
        capped = apply_schema_limits(result.tables, limits)
        capped.truncated = capped.truncated or result.truncated
        logger.info(
            f"Introspected {len(capped.tables)} tables for {call.data_source_id}"
            f"{' (truncated)' if capped.truncated else ''}"
        )
        return capped

    def _degraded(self, call: PreparedCall, error: IntrospectionError) -> SchemaResult:
        logger.warning(
            f"Schema introspection failed for {call.data_source_id}: {error.message}",
            extra={"error_context": error.to_dict()}
        )
        return SchemaResult(tables=[], truncated=True, error=error.message)
