"""
HTTP client utilities for s3objects
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

logger = logging.getLogger(__name__)

ChunkSink = Callable[[bytes], Union[None, Awaitable[None]]]


@dataclass
class HttpResponse:
    """Status, headers and the raw (undecoded) body of a response."""
    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    content: bytes = b""
    reason_phrase: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def decoded_text(self) -> str:
        """Body with Content-Encoding and charset decoding applied."""
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            content=self.content,
        ).text

    def as_string(self) -> str:
        lines = [f"{self.status_code} {self.reason_phrase}".rstrip()]
        lines.extend(f"{name}: {value}" for name, value in self.headers.multi_items())
        lines.append("")
        lines.append(self.text)
        return "\n".join(lines)


class HttpClient:
    """
    HTTP client wrapper with connection pooling and retry logic.

    Bodies are sent as given; an async-iterable body is iterated again on
    each retry, so it must be restartable.
    """

    def __init__(
        self,
        timeout: int = 30,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=100),
            transport=transport,
        )

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[Any] = None,
        sink: Optional[ChunkSink] = None,
    ) -> HttpResponse:
        """
        Send a request and collect the raw response body.

        With ``sink``, the body of a successful response is passed to it
        chunk by chunk instead of being collected.
        """
        response = await self._request(method, url, headers=headers, content=content)
        chunks = []
        try:
            async for chunk in response.aiter_raw():
                if sink is not None and response.is_success:
                    result = sink(chunk)
                    if inspect.isawaitable(result):
                        await result
                else:
                    chunks.append(chunk)
        finally:
            await response.aclose()

        return HttpResponse(
            status_code=response.status_code,
            headers=response.headers,
            content=b"".join(chunks),
            reason_phrase=response.reason_phrase,
        )

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[Any] = None,
    ) -> httpx.Response:
        """Make HTTP request with exponential backoff retry logic."""
        for attempt in range(self.max_retries):
            try:
                request = self._client.build_request(method, url, headers=headers, content=content)
                return await self._client.send(request, stream=True)
            except httpx.RequestError as ex:
                if attempt < self.max_retries - 1:
                    wait_time = min(1000 * (2 ** attempt), 10000) / 1000
                    logger.debug(
                        "[S3Objects][Http] retrying method=%s url=%s attempt=%s error=%s",
                        method,
                        url,
                        attempt + 1,
                        ex,
                    )
                    await asyncio.sleep(wait_time)
                else:
                    raise

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
