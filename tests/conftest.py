"""Shared fixtures: an in-memory fetcher standing in for the network."""

from __future__ import annotations

from collections import Counter
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

import pytest

from sponge.crawler.fetcher import FetchResult, parse_media_type
from sponge.crawler.uri import CrawlURI, normalize
from sponge.errors import TransientIOError
from sponge.utils.config import CrawlConfig
from sponge.utils.retry import RetryPolicy


ROOT = "https://test.com"


class FakeStream:
    def __init__(self, body: bytes, fail: bool = False):
        self.body = body
        self.fail = fail

    async def _chunks(self, size):
        if self.fail:
            raise TransientIOError("connection reset while reading")
        for start in range(0, len(self.body), size):
            yield self.body[start:start + size]

    def iter_chunked(self, size):
        return self._chunks(size)


class FakeResponse:
    def __init__(self, status: int, body: bytes, fail: bool = False):
        self.status = status
        self.content = FakeStream(body, fail)


class StubFetcher:
    """
    Serves canned responses keyed by canonical URI.

    ``fetch_calls`` counts classification fetches (one per call, however many
    attempts it took), ``fetch_attempts`` counts every attempt and
    ``stream_calls`` counts download transfers.
    """

    def __init__(self, retry_attempts: int = 3):
        self.responses: Dict[str, Tuple[int, Optional[str], bytes]] = {}
        self.failing: Set[str] = set()
        self.failing_streams: Set[str] = set()
        self.fetch_calls: Counter = Counter()
        self.fetch_attempts: Counter = Counter()
        self.stream_calls: Counter = Counter()
        self.retry_policy = RetryPolicy(max_attempts=retry_attempts, delay=0)
        self.started = False
        self.closed = False

    @staticmethod
    def key(uri) -> str:
        return str(uri if isinstance(uri, CrawlURI) else normalize(uri))

    def given_document(self, uri: str, html: str, content_type: str = "text/html; charset=utf-8",
                       status: int = 200):
        self.responses[self.key(uri)] = (status, content_type, html.encode("utf-8"))

    def given_file(self, uri: str, content_type: str = "text/plain", body: bytes = b"content"):
        self.responses[self.key(uri)] = (200, content_type, body)

    def given_failure(self, uri: str):
        self.failing.add(self.key(uri))

    def given_stream_failure(self, uri: str):
        self.failing_streams.add(self.key(uri))

    def fetched(self, uri: str) -> int:
        return self.fetch_calls[self.key(uri)]

    def downloaded(self, uri: str) -> int:
        return self.stream_calls[self.key(uri)]

    def get_stats(self) -> Dict[str, int]:
        return {
            'total_requests': sum(self.fetch_attempts.values()) + sum(self.stream_calls.values()),
            'failed_requests': sum(self.fetch_attempts[key] for key in self.failing),
        }

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    async def fetch(self, uri: CrawlURI) -> FetchResult:
        self.fetch_calls[str(uri)] += 1
        return await self.retry_policy.call(self._fetch_once, uri)

    async def _fetch_once(self, uri: CrawlURI) -> FetchResult:
        key = str(uri)
        self.fetch_attempts[key] += 1

        if key in self.failing:
            raise TransientIOError(f"Error fetching {uri}: connection refused")

        status, content_type, body = self.responses.get(key, (404, "text/html", b""))
        media_type = parse_media_type(content_type)
        content = body.decode("utf-8") if media_type in ("text/html", "application/xhtml+xml") else None

        return FetchResult(uri=uri, status_code=status, content_type=media_type,
                           content=content, final_url=key)

    @asynccontextmanager
    async def stream(self, uri: CrawlURI):
        key = str(uri)
        self.stream_calls[key] += 1

        if key in self.failing:
            raise TransientIOError(f"Error requesting {uri}: connection refused")

        status, _, body = self.responses.get(key, (404, None, b""))
        yield FakeResponse(status, body, fail=key in self.failing_streams)


def html(*targets: str, images: Tuple[str, ...] = ()) -> str:
    links = "".join(f'<a href="{target}">link</a>' for target in targets)
    imgs = "".join(f'<img src="{image}" />' for image in images)
    return f"<html><body>{links}{imgs}</body></html>"


def make_config(output_directory: Path, **overrides) -> CrawlConfig:
    values = dict(
        root_uri=normalize(ROOT),
        output_directory=output_directory,
        mime_types={"text/plain"},
        file_extensions={"png"},
        retry_delay=0,
    )
    values.update(overrides)
    return CrawlConfig(**values).validate()


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def output_directory(tmp_path) -> Path:
    return tmp_path / "output"


@pytest.fixture
def config(output_directory) -> CrawlConfig:
    return make_config(output_directory)
