"""
Shared aiohttp transport for every discovery strategy.

Owns one lazily created ClientSession with a certifi-backed SSL context and
applies the per-call timeout plus linear-backoff retry policy used for all
outbound requests.
"""

import asyncio
import json
import logging
import ssl
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp
import certifi


DEFAULT_USER_AGENT = "Daily-Discovery/1.0 (+https://daily-discovery.local)"


class HttpClientError(Exception):
    """Base class for transport-level failures"""
    pass


class HTTPStatusError(HttpClientError):
    """Non-2xx response"""

    def __init__(self, status: int, url: str):
        self.status = status
        self.url = url
        super().__init__(f"HTTP {status} for {url}")


class InvalidJSONError(HttpClientError):
    """Response body was not valid JSON"""
    pass


TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, HTTPStatusError)


class HttpClient:
    """
    Thin async HTTP client with bounded timeouts and retry/backoff.

    Retries cover timeouts, transport errors and non-2xx statuses. The
    delay before retry ``n`` is ``backoff_seconds * n``.
    """

    def __init__(
        self,
        retries: int = 2,
        backoff_seconds: float = 1.0,
        user_agent: str = DEFAULT_USER_AGENT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.retries = max(0, retries)
        self.backoff_seconds = backoff_seconds
        self.user_agent = user_agent
        self._sleep = sleep
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger(__name__)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the ClientSession."""
        if self.session is None or self.session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self.session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
                connector=connector,
            )
        return self.session

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]],
        headers: Optional[Dict[str, str]],
        json_body: Any,
        timeout: float,
    ) -> Tuple[int, str]:
        """Perform a single request and return (status, body)."""
        session = await self._get_session()
        async with session.request(
            method,
            url,
            params=params,
            headers=headers,
            json=json_body,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            body = await resp.text()
            return resp.status, body

    async def request_text(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        timeout: float = 12.0,
        retries: Optional[int] = None,
    ) -> str:
        attempts = max(0, self.retries if retries is None else retries) + 1
        last_error: Optional[BaseException] = None

        for attempt in range(attempts):
            try:
                status, body = await self._send(method, url, params, headers, json_body, timeout)
                if not 200 <= status < 300:
                    raise HTTPStatusError(status, url)
                return body
            except TRANSIENT_ERRORS as exc:
                last_error = exc
                if attempt + 1 < attempts:
                    delay = self.backoff_seconds * (attempt + 1)
                    self.logger.warning(
                        f"{method} {url} failed ({describe_error(exc)}), retry {attempt + 1}/{attempts - 1} in {delay:.1f}s"
                    )
                    await self._sleep(delay)

        raise last_error

    async def get_text(self, url: str, **kwargs) -> str:
        return await self.request_text("GET", url, **kwargs)

    async def get_json(self, url: str, **kwargs) -> Any:
        return _decode_json(await self.request_text("GET", url, **kwargs), url)

    async def post_json(self, url: str, payload: Any, **kwargs) -> Any:
        return _decode_json(await self.request_text("POST", url, json_body=payload, **kwargs), url)


def _decode_json(body: str, url: str) -> Any:
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise InvalidJSONError(f"Invalid JSON from {url}: {e}") from e


def describe_error(error: BaseException) -> str:
    """Readable message for exceptions whose str() may be empty (e.g. timeouts)."""
    message = str(error)
    if isinstance(error, asyncio.TimeoutError) and not message:
        return "Request timed out"
    return message or type(error).__name__
