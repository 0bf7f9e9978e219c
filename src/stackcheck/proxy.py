"""
Proxied queries against backends behind the gateway.

Queries are addressed by a backend's opaque uid (resolved beforehand through
:class:`~stackcheck.registry.DatasourceRegistry`) and written in that
backend's own dialect: PromQL for time-series backends, LogQL for log
backends.

A rejected query (4xx/5xx from the backend, or a 200 envelope carrying
``status: "error"``) raises :class:`~stackcheck.errors.QueryError`. An empty
result is a success with zero series or streams; callers decide whether
"no data" matters.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from stackcheck.errors import (
    FailureKind,
    GatewayError,
    MalformedResponseError,
    QueryError,
)
from stackcheck.gateway import GatewayClient
from stackcheck.models import (
    AlertGroup,
    LogResult,
    QueryResult,
    Session,
    build_log_result,
    build_query_result,
    parse_payload,
)
from stackcheck.timeouts import DEFAULT_LOG_WINDOW_S, NANOS_PER_SECOND

logger = logging.getLogger(__name__)

PROXY_PREFIX = "/api/datasources/proxy/uid/{uid}"
INSTANT_QUERY_PATH = PROXY_PREFIX + "/api/v1/query"
LOG_RANGE_PATH = PROXY_PREFIX + "/loki/api/v1/query_range"
RULES_PATH = PROXY_PREFIX + "/api/v1/rules"

# Prometheus errorType values that point at the backend rather than the query
_SERVER_ERROR_TYPES = frozenset({"internal", "unavailable", "execution", "timeout", "canceled"})


def time_window(window_s: int = DEFAULT_LOG_WINDOW_S, now_ns: Optional[int] = None) -> tuple[int, int]:
    """Return ``(start, end)`` in nanoseconds for a window ending at ``now_ns``."""
    if window_s <= 0:
        raise ValueError("window_s must be positive")
    end = now_ns if now_ns is not None else time.time_ns()
    return end - window_s * NANOS_PER_SECOND, end


class QueryProxyClient:
    """Issue backend-native queries through the gateway proxy path."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def _proxy_get(
        self,
        session: Session,
        path: str,
        params: Optional[dict[str, Any]],
        expression: Optional[str],
    ) -> Any:
        try:
            payload = await self.gateway.get_json(path, session=session, params=params)
        except GatewayError as e:
            raise QueryError(
                f"backend rejected query: {e.message}",
                expression=expression,
                kind=e.kind,
                status_code=e.status_code,
            ) from e

        if isinstance(payload, dict) and payload.get("status") == "error":
            error_type = str(payload.get("errorType", ""))
            raise QueryError(
                f"backend returned error ({error_type or 'unknown'}): {payload.get('error', '')}",
                expression=expression,
                kind=(
                    FailureKind.SERVER_ERROR
                    if error_type in _SERVER_ERROR_TYPES
                    else FailureKind.CLIENT_ERROR
                ),
            )
        return payload

    async def instant_query(self, session: Session, datasource_id: str, expression: str) -> QueryResult:
        """
        Evaluate a PromQL expression at the current instant.

        Raises:
            QueryError: The backend rejected the expression.
            TransportError: No response.
            MalformedResponseError: The envelope lacks ``status`` or ``data``.
        """
        path = INSTANT_QUERY_PATH.format(uid=datasource_id)
        payload = await self._proxy_get(session, path, {"query": expression}, expression)
        result = build_query_result(payload)
        logger.debug(f"instant query {expression!r}: {len(result.series)} series")
        return result

    async def range_query(
        self,
        session: Session,
        datasource_id: str,
        expression: str,
        start: int,
        end: int,
    ) -> LogResult:
        """
        Run a LogQL selector over ``[start, end]`` (nanosecond timestamps).

        Raises:
            ValueError: If ``start >= end``.
            QueryError: The backend rejected the selector.
            TransportError: No response.
            MalformedResponseError: The envelope lacks ``data``.
        """
        if start >= end:
            raise ValueError(f"range query start ({start}) must precede end ({end})")
        path = LOG_RANGE_PATH.format(uid=datasource_id)
        params = {"query": expression, "start": str(start), "end": str(end)}
        payload = await self._proxy_get(session, path, params, expression)
        result = build_log_result(payload)
        logger.debug(
            f"log query {expression!r}: {len(result.streams)} streams, {result.entry_count} entries"
        )
        return result

    async def alert_rules(self, session: Session, datasource_id: str) -> list[AlertGroup]:
        """
        Fetch rule groups from a backend's ``/api/v1/rules`` endpoint.

        Raises:
            QueryError: The backend rejected the request.
            MalformedResponseError: ``data.groups`` is not a list.
        """
        path = RULES_PATH.format(uid=datasource_id)
        payload = await self._proxy_get(session, path, None, None)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise MalformedResponseError("rules response lacks data", field="data")
        groups = data.get("groups") or []
        if not isinstance(groups, list):
            raise MalformedResponseError("rule groups must be a list", field="data.groups")
        return [parse_payload(AlertGroup, g, "alert group") for g in groups]
