"""Tests for sponge.crawler.classifier and sponge.crawler.parser."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import ROOT, StubFetcher, html, make_config
from sponge.crawler.classifier import (
    DOWNLOAD,
    IGNORE,
    Classifier,
    Expand,
    OutcomeKind,
    compute_children,
)
from sponge.crawler.fetcher import FetchResult
from sponge.crawler.parser import ContentParser
from sponge.crawler.uri import normalize
from sponge.errors import TransientIOError
from sponge.utils.monitoring import CrawlerMonitor


class TestContentParser:
    def test_links_and_images_are_absolute(self):
        parsed = ContentParser().parse(
            "https://test.com/docs/",
            '<a href="a.txt">a</a><a href="/b.txt">b</a><img src="img/c.png">'
        )
        assert parsed.links == ["https://test.com/docs/a.txt", "https://test.com/b.txt"]
        assert parsed.images == ["https://test.com/docs/img/c.png"]

    def test_skips_fragments_and_pseudo_schemes(self):
        parsed = ContentParser().parse(ROOT, html(
            "#top", "", "javascript:void(0)", "mailto:a@test.com", "tel:123", "/ok"
        ))
        assert parsed.links == [f"{ROOT}/ok"]

    def test_duplicate_targets_collapse(self):
        parsed = ContentParser().parse(ROOT, html("/a", "/a", images=("/a",)))
        assert parsed.links == [f"{ROOT}/a"]
        assert parsed.targets == [f"{ROOT}/a", f"{ROOT}/a"]

    def test_base_element(self):
        parsed = ContentParser().parse(
            f"{ROOT}/page", '<html><head><base href="/files/"></head><body><a href="x.txt"></a></body></html>'
        )
        assert parsed.links == [f"{ROOT}/files/x.txt"]

    def test_empty_document(self):
        parsed = ContentParser().parse(ROOT, "   ")
        assert parsed.links == []
        assert parsed.images == []


class TestComputeChildren:
    def test_filters_parent_invalid_and_foreign_hosts(self):
        parent = normalize(ROOT)
        children = compute_children(parent, [
            ROOT,
            "https://www.test.com#x",
            "ftp://test.com/file",
            "http://",
            "https://other.com/a",
            "https://sub.test.com/a",
            "https://test.com/a",
            "https://www.test.com/a",
        ], "test.com", include_subdomains=False)

        assert children == frozenset({normalize("https://test.com/a")})

    def test_subdomains_when_enabled(self):
        children = compute_children(normalize(ROOT), ["https://sub.test.com/a"], "test.com", True)
        assert children == frozenset({normalize("https://sub.test.com/a")})


class TestClassifier:
    def make(self, tmp_path, fetcher=None, **overrides):
        config = make_config(tmp_path, **overrides)
        return Classifier(config, fetcher or StubFetcher())

    @pytest.mark.asyncio
    async def test_extension_match_skips_fetch(self, tmp_path):
        fetcher = AsyncMock()
        classifier = self.make(tmp_path, fetcher=fetcher)

        outcome = await classifier.classify(normalize(f"{ROOT}/picture.PNG"))

        assert outcome is DOWNLOAD
        fetcher.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_html_expands(self, tmp_path):
        fetcher = StubFetcher()
        fetcher.given_document(ROOT, html("/a.txt", images=("/b.png",)))
        classifier = self.make(tmp_path, fetcher=fetcher)

        outcome = await classifier.classify(normalize(ROOT))

        assert isinstance(outcome, Expand)
        assert outcome.kind is OutcomeKind.EXPAND
        assert outcome.children == frozenset({normalize(f"{ROOT}/a.txt"), normalize(f"{ROOT}/b.png")})

    @pytest.mark.asyncio
    async def test_xhtml_expands(self, tmp_path):
        fetcher = StubFetcher()
        fetcher.given_document(ROOT, html("/a"), content_type="application/xhtml+xml")
        classifier = self.make(tmp_path, fetcher=fetcher)

        assert (await classifier.classify(normalize(ROOT))).kind is OutcomeKind.EXPAND

    @pytest.mark.asyncio
    async def test_html_without_children_is_ignored(self, tmp_path):
        fetcher = StubFetcher()
        fetcher.given_document(ROOT, html("https://other.com/a"))
        classifier = self.make(tmp_path, fetcher=fetcher)

        assert await classifier.classify(normalize(ROOT)) is IGNORE

    @pytest.mark.asyncio
    async def test_configured_mime_type_downloads(self, tmp_path):
        fetcher = StubFetcher()
        fetcher.given_file(f"{ROOT}/notes", content_type="Text/Plain; charset=UTF-8")
        classifier = self.make(tmp_path, fetcher=fetcher)

        assert await classifier.classify(normalize(f"{ROOT}/notes")) is DOWNLOAD

    @pytest.mark.asyncio
    async def test_unsupported_mime_type_is_ignored(self, tmp_path):
        fetcher = StubFetcher()
        fetcher.given_file(f"{ROOT}/image", content_type="image/tiff")
        classifier = self.make(tmp_path, fetcher=fetcher)

        assert await classifier.classify(normalize(f"{ROOT}/image")) is IGNORE

    @pytest.mark.asyncio
    async def test_error_status_is_ignored(self, tmp_path):
        fetcher = StubFetcher()
        fetcher.given_document(ROOT, html("/a"), status=500)
        classifier = self.make(tmp_path, fetcher=fetcher)

        assert await classifier.classify(normalize(ROOT)) is IGNORE

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self, tmp_path):
        fetcher = StubFetcher(retry_attempts=2)
        fetcher.given_failure(ROOT)
        classifier = self.make(tmp_path, fetcher=fetcher)

        with pytest.raises(TransientIOError):
            await classifier.classify(normalize(ROOT))

        assert fetcher.fetch_attempts[str(normalize(ROOT))] == 2

    def test_relative_links_resolve_against_redirect_target(self, tmp_path):
        classifier = self.make(tmp_path)
        uri = normalize(f"{ROOT}/old")
        result = FetchResult(uri=uri, status_code=200, content_type="text/html",
                             content=html("file.txt"), final_url=f"{ROOT}/new/")

        outcome = classifier.classify_response(uri, result)

        assert outcome.children == frozenset({normalize(f"{ROOT}/new/file.txt")})

    @pytest.mark.asyncio
    async def test_fetch_latency_is_recorded(self, tmp_path):
        fetcher = StubFetcher()
        fetcher.given_document(ROOT, html("/a"))
        monitor = CrawlerMonitor()
        classifier = Classifier(make_config(tmp_path), fetcher, monitor=monitor)

        await classifier.classify(normalize(ROOT))
        await classifier.classify(normalize(f"{ROOT}/picture.png"))

        values = monitor.metrics.get_current_values()
        assert values["fetches_total"] == 1
        assert values["fetch_seconds_count"] == 1
