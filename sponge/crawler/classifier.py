"""
Classification of crawl URIs into download, expand or ignore outcomes.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable

from .fetcher import FetchResult
from .parser import ContentParser, ParsedContent
from .uri import CrawlURI, is_visitable_host, try_normalize


class OutcomeKind(Enum):
    """Kinds of visit outcomes."""
    DOWNLOAD = 'download'
    EXPAND = 'expand'
    IGNORE = 'ignore'


class VisitOutcome:
    """Memoized decision for one URI."""
    kind: OutcomeKind
    children: FrozenSet[CrawlURI] = frozenset()


class Download(VisitOutcome):
    kind = OutcomeKind.DOWNLOAD

    def __repr__(self):
        return 'DOWNLOAD'


class Ignore(VisitOutcome):
    kind = OutcomeKind.IGNORE

    def __repr__(self):
        return 'IGNORE'


@dataclass(frozen=True)
class Expand(VisitOutcome):
    """HTML document whose visitable children are already filtered."""
    children: FrozenSet[CrawlURI]
    kind = OutcomeKind.EXPAND


DOWNLOAD = Download()
IGNORE = Ignore()


def compute_children(uri: CrawlURI, targets: Iterable[str], root_host: str,
                     include_subdomains: bool) -> FrozenSet[CrawlURI]:
    """
    Normalize and filter raw target strings into visitable child URIs.

    Unparseable targets are dropped, as is the parent itself and anything
    outside the visitable hosts.
    """
    children = set()

    for target in targets:
        child = try_normalize(target)
        if child is None or child == uri:
            continue
        if is_visitable_host(child.host, root_host, include_subdomains):
            children.add(child)

    return frozenset(children)


class Classifier:
    """
    Decides what to do with a URI.

    Extension matches are downloaded without any metadata request. Everything
    else is fetched once and classified by media type: HTML documents are
    expanded, configured media types are downloaded, the rest is ignored.
    """

    def __init__(self, config, fetcher, parser: ContentParser = None, monitor=None):
        self.config = config
        self.fetcher = fetcher
        self.parser = parser or ContentParser()
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

    async def classify(self, uri: CrawlURI) -> VisitOutcome:
        """
        Resolve the outcome of a URI.

        Raises:
            TransientIOError: when fetching failed on every retry attempt
        """
        if uri.extension and uri.extension in self.config.file_extensions:
            return DOWNLOAD

        result = await self.fetcher.fetch(uri)
        if self.monitor:
            self.monitor.record_fetch(result.fetch_time)

        return self.classify_response(uri, result)

    def classify_response(self, uri: CrawlURI, result: FetchResult) -> VisitOutcome:
        """Classify an already fetched response."""
        if not result.ok:
            self.logger.debug(f"Ignoring {uri}: HTTP {result.status_code}")
            return IGNORE

        if result.is_html:
            # Relative targets resolve against the post-redirect location
            parsed = self.parser.parse(result.final_url or str(uri), result.content or '')
            children = self.children_of(uri, parsed)
            return Expand(children) if children else IGNORE

        if result.content_type in self.config.mime_types:
            return DOWNLOAD

        self.logger.debug(f"Ignoring {uri}: unsupported content type {result.content_type}")
        return IGNORE

    def children_of(self, uri: CrawlURI, parsed: ParsedContent) -> FrozenSet[CrawlURI]:
        return compute_children(uri, parsed.targets, self.config.root_host,
                                self.config.include_subdomains)
