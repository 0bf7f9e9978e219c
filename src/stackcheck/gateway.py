"""
Shared HTTP transport for every call stackcheck makes against the gateway.

``GatewayClient`` owns one ``httpx.AsyncClient`` and applies the run-wide
policies in one place:

- base URL joining
- bearer injection from an explicit :class:`~stackcheck.models.Session`
- per-call timeout
- a cap on outstanding requests (``asyncio.Semaphore``)
- retry with exponential backoff on 429/502/503/504 and connection/timeout
  errors
- failure classification: transport errors become ``TransportError``,
  non-2xx responses become ``GatewayError`` with their kind and status

Example:
    async with GatewayClient("http://localhost:3000") as gateway:
        session = await SessionAuthenticator(gateway).authenticate("admin", "pw")
        health = await gateway.get_json("/api/health", session=session)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from stackcheck.errors import (
    FailureKind,
    GatewayError,
    MalformedResponseError,
    TransportError,
    classify_status,
)
from stackcheck.models import Session
from stackcheck.timeouts import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_DELAY_S,
    HTTP_CLIENT_TIMEOUT_S,
    RETRYABLE_HTTP_STATUS_CODES,
)

logger = logging.getLogger(__name__)


def format_gateway_error(response: httpx.Response) -> str:
    """Format a gateway or backend error body for human readability."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()[:200] or response.reason_phrase
    if isinstance(data, dict):
        for key in ("message", "error"):
            if data.get(key):
                return str(data[key])
    return response.reason_phrase


class GatewayClient:
    """Async HTTP client bound to one gateway base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = HTTP_CLIENT_TIMEOUT_S,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Gateway base URL, e.g. ``http://localhost:3000``.
            timeout: Default per-call timeout in seconds.
            max_concurrency: Cap on outstanding requests.
            max_retries: Retries for transient failures (0 disables).
            http_client: Pre-built client (tests inject a MockTransport here).
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        session: Optional[Session] = None,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        Execute one request, retrying transient failures.

        Returns the final response whatever its status; only the absence of
        a response raises.

        Raises:
            TransportError: If every attempt failed without a response.
        """
        url = self.url_for(path)
        headers = session.auth_headers() if session is not None else {}
        delay = DEFAULT_RETRY_DELAY_S

        for attempt in range(self.max_retries + 1):
            try:
                async with self._semaphore:
                    response = await self._http.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        headers=headers,
                        timeout=timeout if timeout is not None else self.timeout,
                    )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt < self.max_retries:
                    logger.warning(
                        f"Gateway request {method} {path} failed: {e!r}, "
                        f"retrying in {delay:.1f}s ({attempt + 1}/{self.max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                    delay *= DEFAULT_RETRY_BACKOFF
                    continue
                reason = "timed out" if isinstance(e, httpx.TimeoutException) else "unreachable"
                raise TransportError(f"{method} {path} {reason}: {e!r}") from e

            if response.status_code in RETRYABLE_HTTP_STATUS_CODES and attempt < self.max_retries:
                logger.warning(
                    f"Gateway returned {response.status_code} for {method} {path}, "
                    f"retrying in {delay:.1f}s ({attempt + 1}/{self.max_retries + 1})"
                )
                await asyncio.sleep(delay)
                delay *= DEFAULT_RETRY_BACKOFF
                continue

            logger.debug(f"{method} {path} -> {response.status_code}")
            return response

        raise RuntimeError("Unexpected retry loop exit")

    async def get_json(
        self,
        path: str,
        *,
        session: Session,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        GET ``path`` with the session's bearer token and decode the JSON body.

        Raises:
            TransportError: No response.
            GatewayError: Non-2xx response (kind from the status code).
            MalformedResponseError: 2xx response whose body is not JSON.
        """
        response = await self.request("GET", path, session=session, params=params, timeout=timeout)
        raise_for_status(response, path)
        return decode_json(response, path)


def raise_for_status(response: httpx.Response, path: str) -> None:
    """Raise a classified GatewayError for any non-2xx response."""
    if response.is_success:
        return
    code = response.status_code
    raise GatewayError(
        f"GET {path}: {format_gateway_error(response)}",
        kind=classify_status(code) if code >= 400 else FailureKind.MALFORMED,
        status_code=code,
    )


def decode_json(response: httpx.Response, path: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise MalformedResponseError(f"{path} returned a non-JSON body", field="<body>") from exc
