"""
ResilientFetcher - One outbound call with bounded retries.

- Fixed delay between attempts, max_retries extra attempts
- Only transient failures are retried (transport errors, timeouts, 5xx, 429)
- Garbage bodies come back as a sentinel payload instead of raising
- One cancellation token per call, always signalled when the call ends
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from eregs.services.circuit_breaker import CircuitBreakerRegistry
from eregs.services.errors import (
    CircuitOpenError,
    ConfigurationError,
    RequestCancelledError,
    RequestTimeoutError,
    ResourceNotFoundError,
    TransientNetworkError,
    UpstreamHTTPError,
)

INVALID_JSON_ERROR = "Invalid JSON response"

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "X-Requested-With": "XMLHttpRequest",
    "User-Agent": "eregs-client",
}

RETRYABLE_STATUS_CODES = {408, 425, 429}


@dataclass
class FetchRequest:
    """A single outbound request."""

    url: str
    method: str = "GET"
    content: str | bytes | None = None
    headers: dict[str, str] | None = None


@dataclass
class FetchResponse:
    """Parsed response from a fetch."""

    url: str
    status_code: int
    data: Any
    raw_length: int = 0

    @property
    def is_malformed(self) -> bool:
        """True when the body failed to parse and data is the sentinel payload."""
        return is_malformed_payload(self.data)


def is_malformed_payload(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and data.get("error") == INVALID_JSON_ERROR
        and "raw_length" in data
    )


def parse_body(text: str, url: str = "") -> Any:
    """Parse a JSON body. Empty body gives None, garbage gives the sentinel."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError as e:
        logger.error(f"Error parsing JSON response from {url}: {e}")
        logger.debug(f"Raw response data: {text[:500]}")
        return {"error": INVALID_JSON_ERROR, "raw_length": len(text)}


def prepare_url(url: str) -> str:
    """
    Validate a request URL, adding https:// to scheme-less absolute URLs.

    Raises:
        ConfigurationError: If the URL is empty
    """
    if not url:
        raise ConfigurationError("URL is required for API requests")
    if not url.startswith(("/", "http://", "https://")):
        url = "https://" + url
        logger.debug(f"Added https:// protocol to URL: {url}")
    return url


class ResilientFetcher:
    """
    HTTP fetcher with retries, cancellation and an optional circuit breaker.

    Usage:
        fetcher = ResilientFetcher(timeout=60.0, max_retries=3, retry_delay=2.0)
        response = await fetcher.fetch(FetchRequest(url=f"{base}/Objectives"))
        if response.is_malformed:
            ...
        await fetcher.close()
    """

    def __init__(
        self,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        circuit_breakers: CircuitBreakerRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ):
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._circuit_breakers = circuit_breakers
        self._transport = transport
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry | None:
        return self._circuit_breakers

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def fetch(
        self,
        request: FetchRequest | str,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> FetchResponse:
        """
        Issue the request, retrying transient failures.

        Args:
            request: FetchRequest or a plain URL for GET
            max_retries: Extra attempts after the first (default from init)
            retry_delay: Seconds between attempts (default from init)
            cancel: Cancellation token; set it to abort the call

        Returns:
            FetchResponse (data may be the malformed-body sentinel)

        Raises:
            ConfigurationError: Empty or unusable URL, before any attempt
            TransientNetworkError: Last failure once retries are exhausted
            RequestCancelledError: The token was set
            CircuitOpenError: The host's circuit is open
            UpstreamHTTPError: Non-retryable HTTP error (404 as ResourceNotFoundError)
        """
        if isinstance(request, str):
            request = FetchRequest(url=request)
        url = prepare_url(request.url)
        try:
            host = httpx.URL(url).host or "default"
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid URL '{url}': {e}") from e

        retries = self._max_retries if max_retries is None else max_retries
        delay = self._retry_delay if retry_delay is None else retry_delay
        cancel = cancel or asyncio.Event()

        breaker = self._circuit_breakers.get(host) if self._circuit_breakers else None
        if breaker and not breaker.can_request():
            cancel.set()
            raise CircuitOpenError(host, breaker.get_time_until_reset() or 0)

        try:
            response = await self._fetch_with_retries(
                request, url, retries, delay, cancel
            )
        except (RequestCancelledError, asyncio.CancelledError):
            if breaker:
                breaker.abandon()
            raise
        except TransientNetworkError:
            if breaker:
                breaker.record_failure()
            raise
        except UpstreamHTTPError:
            # Host answered, so it is reachable
            if breaker:
                breaker.record_success()
            raise
        except BaseException:
            # No verdict on the host, but the probe slot must not stay taken
            if breaker:
                breaker.abandon()
            raise
        finally:
            cancel.set()

        if breaker:
            breaker.record_success()
        return response

    async def _fetch_with_retries(
        self,
        request: FetchRequest,
        url: str,
        retries: int,
        delay: float,
        cancel: asyncio.Event,
    ) -> FetchResponse:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(request, url, cancel, attempt)
            except RequestCancelledError:
                raise
            except TransientNetworkError as e:
                if attempt > retries:
                    logger.error(f"Request to {url} failed after {attempt} attempts")
                    raise
                logger.warning(
                    f"Request to {url} failed (attempt {attempt}/{retries + 1}), "
                    f"retrying in {delay}s: {e}"
                )
            await self._wait(delay, cancel, url, attempt)

    async def _attempt(
        self,
        request: FetchRequest,
        url: str,
        cancel: asyncio.Event,
        attempt: int,
    ) -> FetchResponse:
        """Execute one HTTP attempt, racing it against the cancellation token."""
        if cancel.is_set():
            raise RequestCancelledError(
                f"Request to '{url}' was cancelled", url=url, attempts=attempt
            )

        client = self._get_http_client()
        send = asyncio.ensure_future(
            client.request(
                request.method,
                url,
                content=request.content,
                headers=request.headers,
            )
        )
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({send, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (send, waiter):
                if not task.done():
                    task.cancel()

        if not send.done() or send.cancelled():
            await asyncio.gather(send, return_exceptions=True)
            raise RequestCancelledError(
                f"Request to '{url}' was cancelled", url=url, attempts=attempt
            )

        try:
            response = send.result()
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(url, self._timeout, attempt) from e
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise ConfigurationError(f"Unsupported URL '{url}': {e}") from e
        except httpx.DecodingError as e:
            logger.error(f"Error decoding response body from {url}: {e}")
            return FetchResponse(
                url=url,
                status_code=0,
                data={"error": INVALID_JSON_ERROR, "raw_length": 0},
            )
        except httpx.RequestError as e:
            # Transport failures and redirect loops
            raise TransientNetworkError(
                f"Request to '{url}' failed (attempt {attempt}): "
                f"{type(e).__name__}: {e}",
                url=url,
                attempts=attempt,
            ) from e

        status = response.status_code
        if status >= 500 or status in RETRYABLE_STATUS_CODES:
            raise TransientNetworkError(
                f"HTTP {status} from '{url}' (attempt {attempt})",
                url=url,
                attempts=attempt,
            )
        if status == 404:
            raise ResourceNotFoundError(url, status, response.text)
        if status >= 400:
            raise UpstreamHTTPError(url, status, response.text)

        text = response.text
        return FetchResponse(
            url=url,
            status_code=status,
            data=parse_body(text, url),
            raw_length=len(text),
        )

    async def _wait(
        self, delay: float, cancel: asyncio.Event, url: str, attempt: int
    ) -> None:
        """Sleep between attempts, waking early if the call is cancelled."""
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RequestCancelledError(
            f"Request to '{url}' was cancelled", url=url, attempts=attempt
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
