"""
REST and GraphQL connectors over httpx.

Retries live in the sync engine; a connector performs exactly one request
per call and maps the HTTP outcome onto the connection error taxonomy:

- 401 -> auth, 403 -> permission_denied, 404 -> not_found
- 429 and 5xx -> retryable network errors
- transport timeouts / DNS / refused / TLS via the exception chain
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from connectors.base import (
    Connector,
    Cursor,
    LatencyProbe,
    SourceRecord,
    SyncBatch,
    natural_key,
)
from connectors.config import GraphQLConfig, RestApiConfig
from core.exceptions import (
    AuthenticationError,
    ConnectionTimeoutError,
    ConnectorException,
    InvalidConfigurationError,
    NetworkError,
    PermissionDeniedError,
    SourceConnectionError,
    SourceNotFoundError,
)
from models.base import DataSourceType

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

# Envelope keys probed, in order, when no data_path is configured
RECORD_KEYS = ("data", "results", "items", "records")


def check_response(response: httpx.Response, url: str) -> httpx.Response:
    """Raise the classified error for a non-2xx response"""
    status = response.status_code
    context = {"status_code": status, "url": url}

    if status == 401:
        raise AuthenticationError(f"HTTP 401 from {url}", context=context)
    if status == 403:
        raise PermissionDeniedError(f"HTTP 403 from {url}", context=context)
    if status == 404:
        raise SourceNotFoundError(f"HTTP 404 from {url}", context=context)
    if status == 429:
        context["retry_after"] = response.headers.get("Retry-After")
        raise NetworkError(f"rate limited by {url}", context=context, round_trip=True)
    if status >= 500:
        context["response_body"] = response.text[:500]
        raise NetworkError(f"HTTP {status} from {url}", context=context, round_trip=True)
    if status >= 400:
        raise SourceConnectionError(f"HTTP {status} from {url}", context=context, round_trip=True)
    return response


class HttpApiConnector(Connector):
    """
    Shared request handling for HTTP sources.

    Attributes:
        transport: Optional httpx transport (e.g. MockTransport in tests)
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    def _client(self, config: RestApiConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=config.auth_headers(),
            timeout=config.option("request_timeout", DEFAULT_REQUEST_TIMEOUT),
            transport=self.transport,
            follow_redirects=True,
        )

    def _json(self, response: httpx.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise SourceConnectionError(
                "response is not valid JSON",
                context={"url": url, "response_body": response.text[:500]},
                original_exception=e,
                round_trip=True
            )

    def classify_error(self, exc: BaseException) -> ConnectorException:
        if isinstance(exc, httpx.TimeoutException):
            return ConnectionTimeoutError("timeout", original_exception=exc)
        classified = super().classify_error(exc)
        if type(classified) is SourceConnectionError and isinstance(exc, httpx.TransportError):
            return NetworkError(str(exc) or type(exc).__name__, original_exception=exc)
        return classified

    async def _send(
        self,
        config: RestApiConfig,
        method: str,
        probe: Optional[LatencyProbe] = None,
        parse_json: bool = True,
        **kwargs
    ) -> Tuple[httpx.Response, Any]:
        url = config.endpoint
        try:
            async with self._client(config) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise self.classify_error(e)

        if probe is not None:
            probe.mark_round_trip()
        check_response(response, url)
        return response, self._json(response, url) if parse_json else None


def extract_records(payload: Any, data_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Locate the list of records in a JSON response.

    ``data_path`` is a dot-separated path (e.g. ``data.users``); without one
    a bare list or a common envelope key is accepted.
    """
    if data_path:
        node = payload
        for part in data_path.split("."):
            if not isinstance(node, dict) or part not in node:
                raise InvalidConfigurationError(
                    f"data path '{data_path}' not found in response",
                    context={"data_path": data_path}
                )
            node = node[part]
        payload = node
    elif isinstance(payload, dict):
        lists = [payload[key] for key in RECORD_KEYS if isinstance(payload.get(key), list)]
        if not lists:
            # e.g. a GraphQL ``data`` object with a single root field
            lists = [value for value in payload.values() if isinstance(value, list)]
        if lists:
            payload = lists[0]

    if not isinstance(payload, list):
        raise InvalidConfigurationError(
            "response does not contain a list of records",
            context={"data_path": data_path}
        )
    return [item if isinstance(item, dict) else {"value": item} for item in payload]


def _server_info(response: httpx.Response) -> Dict[str, Any]:
    info = {
        "statusCode": response.status_code,
        "contentType": response.headers.get("content-type"),
        "server": response.headers.get("server"),
        "httpVersion": response.http_version,
    }
    return {k: v for k, v in info.items() if v is not None}


class RestApiConnector(HttpApiConnector):
    """
    Page-numbered REST endpoint.

    Options:
        page_param: query parameter carrying the page number (default ``page``)
        page_size_param: query parameter carrying the page size (default ``limit``)
        data_path: dot path of the record list in the response
        id_field: record field used as the natural key
    """

    source_type = DataSourceType.REST_API

    async def test_connection(self, config: RestApiConfig, probe: LatencyProbe) -> Dict[str, Any]:
        response, _ = await self._send(config, "GET", probe=probe, parse_json=False)
        return _server_info(response)

    async def sync(self, config: RestApiConfig, cursor: Optional[Cursor], limit: int) -> SyncBatch:
        page = int((cursor or {}).get("page", 1))
        params = {
            config.option("page_param", "page"): page,
            config.option("page_size_param", "limit"): limit,
        }

        logger.debug(f"Fetching page {page} from {config.endpoint}")
        _, payload = await self._send(config, "GET", params=params)
        rows = extract_records(payload, config.option("data_path"))

        if isinstance(payload, dict) and "has_next" in payload:
            has_more = bool(payload["has_next"])
        else:
            has_more = len(rows) >= limit and len(rows) > 0

        id_field = config.option("id_field")
        base = (page - 1) * limit
        records = [
            SourceRecord(external_id=natural_key(row, base + i, id_field), data=row)
            for i, row in enumerate(rows)
        ]
        return SyncBatch(records=records, next_cursor={"page": page + 1}, has_more=has_more)

    def skip_batch(self, cursor: Optional[Cursor], limit: int) -> Optional[Cursor]:
        return {"page": int((cursor or {}).get("page", 1)) + 1}


class GraphQLConnector(HttpApiConnector):
    """
    GraphQL endpoint paged through ``$limit``/``$offset`` variables.

    Options:
        query: GraphQL query document accepting ``$limit`` and ``$offset``
        data_path: dot path of the record list under ``data``
    """

    source_type = DataSourceType.GRAPHQL

    async def _execute(
        self,
        config: GraphQLConfig,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        probe: Optional[LatencyProbe] = None
    ) -> Tuple[httpx.Response, Dict[str, Any]]:
        response, payload = await self._send(
            config, "POST", probe=probe, json={"query": query, "variables": variables or {}}
        )
        if not isinstance(payload, dict):
            raise SourceConnectionError("GraphQL response is not an object", round_trip=True)

        errors = payload.get("errors")
        if errors and payload.get("data") is None:
            first = errors[0].get("message") if isinstance(errors[0], dict) else str(errors[0])
            lowered = (first or "").lower()
            if "unauthorized" in lowered or "unauthenticated" in lowered:
                raise AuthenticationError(first, context={"errors": errors[:5]})
            raise SourceConnectionError(first or "GraphQL error", context={"errors": errors[:5]}, round_trip=True)
        return response, payload

    async def test_connection(self, config: GraphQLConfig, probe: LatencyProbe) -> Dict[str, Any]:
        response, payload = await self._execute(config, "query { __typename }", probe=probe)
        info = _server_info(response)
        typename = (payload.get("data") or {}).get("__typename")
        if typename:
            info["queryType"] = typename
        return info

    async def sync(self, config: GraphQLConfig, cursor: Optional[Cursor], limit: int) -> SyncBatch:
        query = config.option("query")
        if not query:
            raise InvalidConfigurationError(
                "GraphQL sources need a 'query' in their configuration",
                context={"endpoint": config.endpoint}
            )

        offset = int((cursor or {}).get("offset", 0))
        _, payload = await self._execute(config, query, {"limit": limit, "offset": offset})
        rows = extract_records(payload.get("data"), config.option("data_path"))

        id_field = config.option("id_field")
        records = [
            SourceRecord(external_id=natural_key(row, offset + i, id_field), data=row)
            for i, row in enumerate(rows)
        ]
        return SyncBatch(
            records=records,
            next_cursor={"offset": offset + len(rows)},
            has_more=len(rows) >= limit and len(rows) > 0,
        )
