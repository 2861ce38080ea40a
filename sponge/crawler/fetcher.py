"""
Web resource fetcher with transparent redirects and bounded retry.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

import aiohttp
from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from .uri import CrawlURI
from ..errors import TransientIOError
from ..utils.retry import RetryPolicy


HTML_MEDIA_TYPES = frozenset({'text/html', 'application/xhtml+xml'})
TRANSIENT_ERRORS = (ClientError, asyncio.TimeoutError, OSError)


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    uri: CrawlURI
    status_code: int
    content_type: Optional[str] = None
    content: Optional[str] = None
    final_url: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_html(self) -> bool:
        return self.content_type in HTML_MEDIA_TYPES


def parse_media_type(content_type: Optional[str]) -> Optional[str]:
    """Strip parameters from a Content-Type header value and lower-case it."""
    if not content_type:
        return None

    media_type = content_type.split(';', 1)[0].strip().lower()
    if '/' not in media_type:
        return None

    return media_type


class WebFetcher:
    """
    Fetches crawl URIs over one shared aiohttp session.

    Non-2xx responses are returned rather than raised so that the classifier
    decides what to do with them. Network failures are raised as
    TransientIOError and retried according to the retry policy.
    """

    def __init__(self, user_agent: str, referrer: str, request_timeout: float = 30,
                 retry_policy: Optional[RetryPolicy] = None, max_connections: int = 100):
        self.user_agent = user_agent
        self.referrer = referrer
        self.request_timeout = request_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_connections = max_connections

        self.logger = logging.getLogger(__name__)

        # Session management
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_read': 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {
                'Accept-Encoding': 'gzip, deflate',
                'Referer': self.referrer,
                'User-Agent': self.user_agent
            }

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.debug("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug("WebFetcher session closed")

    async def fetch(self, uri: CrawlURI) -> FetchResult:
        """
        Fetch a URI for classification, retrying transient failures.

        Args:
            uri: The URI to fetch

        Returns:
            FetchResult with the media type, and the decoded body for HTML

        Raises:
            TransientIOError: when every attempt failed with a network error
        """
        return await self.retry_policy.call(self._fetch_once, uri)

    async def _fetch_once(self, uri: CrawlURI) -> FetchResult:
        if self.session is None:
            await self.start()

        start_time = time.monotonic()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(str(uri), allow_redirects=True) as response:
                content_type = parse_media_type(response.headers.get('Content-Type'))
                content = None

                if 200 <= response.status < 300 and content_type in HTML_MEDIA_TYPES:
                    body = await response.read()
                    self.stats['total_bytes_read'] += len(body)
                    content = self._decode(body, response.charset)

                self.stats['successful_requests'] += 1

                result = FetchResult(
                    uri=uri,
                    status_code=response.status,
                    content_type=content_type,
                    content=content,
                    final_url=str(response.url),
                    fetch_time=time.monotonic() - start_time
                )

                self.logger.debug(f"Fetched {uri}: {response.status} {content_type}")
                return result

        except TRANSIENT_ERRORS as e:
            self.stats['failed_requests'] += 1
            raise TransientIOError(f"Error fetching {uri}: {str(e) or type(e).__name__}", e) from e

    @asynccontextmanager
    async def stream(self, uri: CrawlURI) -> AsyncIterator[ClientResponse]:
        """
        Open a streaming GET for a download; the body is read by the caller.

        Connection failures are raised as TransientIOError so the caller can
        retry the whole transfer. The request timeout bounds connecting and
        each socket read, never the whole body, so a large file that keeps
        arriving is not cut off.
        """
        if self.session is None:
            await self.start()

        self.stats['total_requests'] += 1

        timeout = ClientTimeout(total=None, sock_connect=self.request_timeout,
                                sock_read=self.request_timeout)
        try:
            response = await self.session.get(str(uri), allow_redirects=True, timeout=timeout)
        except TRANSIENT_ERRORS as e:
            self.stats['failed_requests'] += 1
            raise TransientIOError(f"Error requesting {uri}: {str(e) or type(e).__name__}", e) from e

        try:
            self.stats['successful_requests'] += 1
            yield response
        finally:
            response.release()

    def _decode(self, body: bytes, charset: Optional[str]) -> str:
        encoding = charset or 'utf-8'
        try:
            return body.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            # Try common encodings
            for fallback_encoding in ['utf-8', 'cp1252']:
                try:
                    return body.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue

            return body.decode('utf-8', errors='ignore')

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
