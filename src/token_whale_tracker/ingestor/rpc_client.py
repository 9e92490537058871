"""Rate-limited upstream client with bounded retry and typed results.

Every call returns an ``UpstreamResult`` instead of raising, so callers
decide per error kind whether to substitute a default or propagate.
Only HTTP 429 and client-side timeouts are retried; other failures
usually mean a malformed request and retrying would waste quota.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Constants
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_TIMEOUT_SECONDS = 10.0
RETRY_STATUS_CODES = (429,)


class ErrorKind(Enum):
    """Why an upstream call produced no value."""

    RETRY_EXHAUSTED = "retry_exhausted"
    REJECTED = "rejected"
    MALFORMED = "malformed"
    UNCONFIGURED = "unconfigured"


@dataclass(frozen=True)
class UpstreamError:
    """Context for a failed upstream call."""

    kind: ErrorKind
    message: str
    action: str
    endpoint: str = ""
    key: str | None = None
    status_code: int | None = None


@dataclass(frozen=True)
class UpstreamResult(Generic[T]):
    """Either a value or an ``UpstreamError``, never both."""

    value: T | None = None
    error: UpstreamError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap_or(self, default: T) -> T:
        """Return the value, or ``default`` when the call failed."""
        if self.error is not None or self.value is None:
            return default
        return self.value

    @classmethod
    def success(cls, value: T) -> UpstreamResult[T]:
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        action: str,
        endpoint: str = "",
        key: str | None = None,
        status_code: int | None = None,
    ) -> UpstreamResult[T]:
        return cls(
            error=UpstreamError(
                kind=kind,
                message=message,
                action=action,
                endpoint=endpoint,
                key=key,
                status_code=status_code,
            )
        )


def _redacted_endpoint(url: str) -> str:
    """Strip the query string (which may carry an api key) for logging."""
    return str(httpx.URL(url).copy_with(query=None))


class RateLimitedClient:
    """Async HTTP wrapper used by every chain and market data provider.

    Example:
        >>> client = RateLimitedClient(max_retries=3, base_delay=1.0)
        >>> result = await client.call_rpc(url, "getSlot", [], action="slot")
        >>> if result.ok:
        ...     print(result.value)
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            http_client: Shared httpx client; one is created when omitted.
            max_retries: Total attempts for throttled or timed-out calls.
            base_delay: Backoff step in seconds; attempt ``n`` waits ``base_delay * n``.
            default_timeout: Timeout used when a call does not pass its own.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._default_timeout = default_timeout

    async def send(
        self,
        method: str,
        url: str,
        *,
        action: str,
        key: str | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> UpstreamResult[Any]:
        """Send one request and decode its JSON body.

        Args:
            method: HTTP method.
            url: Full request URL.
            action: Short name of the logical operation, used in logs.
            key: Normalized lookup key (address, signature) for logs.
            json: Optional JSON body.
            params: Optional query parameters.
            headers: Optional request headers.
            timeout: Per-call timeout in seconds.

        Returns:
            Decoded JSON on success, otherwise a typed failure.
        """
        endpoint = _redacted_endpoint(url)
        last_reason = ""

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._http.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=headers,
                    timeout=timeout if timeout is not None else self._default_timeout,
                )
            except httpx.TimeoutException as e:
                last_reason = f"timeout: {e!r}"
            except httpx.HTTPError as e:
                logger.error(
                    "Upstream %s failed (endpoint=%s key=%s): %s",
                    action,
                    endpoint,
                    key,
                    e,
                )
                return UpstreamResult.failure(
                    ErrorKind.REJECTED, str(e), action=action, endpoint=endpoint, key=key
                )
            else:
                if response.status_code in RETRY_STATUS_CODES:
                    last_reason = f"HTTP {response.status_code}"
                elif response.status_code >= 400:
                    logger.error(
                        "Upstream %s rejected with HTTP %d (endpoint=%s key=%s): %s",
                        action,
                        response.status_code,
                        endpoint,
                        key,
                        response.text[:200],
                    )
                    return UpstreamResult.failure(
                        ErrorKind.REJECTED,
                        f"HTTP {response.status_code}",
                        action=action,
                        endpoint=endpoint,
                        key=key,
                        status_code=response.status_code,
                    )
                else:
                    try:
                        return UpstreamResult.success(response.json())
                    except ValueError as e:
                        logger.error(
                            "Upstream %s returned a non-JSON body (endpoint=%s key=%s)",
                            action,
                            endpoint,
                            key,
                        )
                        return UpstreamResult.failure(
                            ErrorKind.MALFORMED,
                            str(e),
                            action=action,
                            endpoint=endpoint,
                            key=key,
                            status_code=response.status_code,
                        )

            if attempt < self._max_retries:
                delay = self._base_delay * attempt
                logger.warning(
                    "Upstream %s attempt %d/%d failed (%s, key=%s). Retrying in %.1f seconds...",
                    action,
                    attempt,
                    self._max_retries,
                    last_reason,
                    key,
                    delay,
                )
                await asyncio.sleep(delay)

        logger.warning(
            "Upstream %s gave up after %d attempts (endpoint=%s key=%s): %s",
            action,
            self._max_retries,
            endpoint,
            key,
            last_reason,
        )
        return UpstreamResult.failure(
            ErrorKind.RETRY_EXHAUSTED,
            last_reason,
            action=action,
            endpoint=endpoint,
            key=key,
        )

    async def call_rpc(
        self,
        url: str,
        rpc_method: str,
        params: Sequence[Any],
        *,
        action: str,
        key: str | None = None,
        timeout: float | None = None,
    ) -> UpstreamResult[Any]:
        """Issue a single JSON-RPC 2.0 call and return its ``result`` member."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": rpc_method, "params": list(params)}
        result = await self.send("POST", url, action=action, key=key, json=payload, timeout=timeout)
        if not result.ok:
            return result

        body = result.value
        if not isinstance(body, dict):
            return UpstreamResult.failure(
                ErrorKind.MALFORMED,
                "JSON-RPC response is not an object",
                action=action,
                endpoint=_redacted_endpoint(url),
                key=key,
            )
        if body.get("error"):
            logger.error(
                "JSON-RPC %s returned error (method=%s key=%s): %s",
                action,
                rpc_method,
                key,
                body["error"],
            )
            return UpstreamResult.failure(
                ErrorKind.REJECTED,
                str(body["error"]),
                action=action,
                endpoint=_redacted_endpoint(url),
                key=key,
            )
        return UpstreamResult.success(body.get("result"))

    async def call_rpc_batch(
        self,
        url: str,
        calls: Sequence[tuple[str, Sequence[Any]]],
        *,
        action: str,
        timeout: float | None = None,
    ) -> UpstreamResult[list[Any]]:
        """Issue a JSON-RPC batch; entries that errored come back as ``None``."""
        if not calls:
            return UpstreamResult.success([])

        payload = [
            {"jsonrpc": "2.0", "id": idx, "method": method, "params": list(params)}
            for idx, (method, params) in enumerate(calls)
        ]
        result = await self.send(
            "POST", url, action=action, key=f"batch[{len(calls)}]", json=payload, timeout=timeout
        )
        if not result.ok:
            return UpstreamResult(error=result.error)

        body = result.value
        if not isinstance(body, list):
            return UpstreamResult.failure(
                ErrorKind.MALFORMED,
                "JSON-RPC batch response is not an array",
                action=action,
                endpoint=_redacted_endpoint(url),
            )

        ordered: list[Any] = [None] * len(calls)
        for item in body:
            if not isinstance(item, dict):
                continue
            idx = item.get("id")
            if not isinstance(idx, int) or not 0 <= idx < len(calls):
                continue
            if item.get("error"):
                logger.debug("JSON-RPC %s entry %d errored: %s", action, idx, item["error"])
                continue
            ordered[idx] = item.get("result")
        return UpstreamResult.success(ordered)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()
