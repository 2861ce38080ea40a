"""
Crawl scheduler that drives the recursive, concurrency-bounded traversal.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .classifier import Classifier, IGNORE, OutcomeKind, VisitOutcome
from .fetcher import WebFetcher
from .parser import ContentParser
from .uri import CrawlURI
from ..errors import ClassificationFailure, SpongeError, root_cause_message
from ..storage.downloader import DownloadManager
from ..utils.monitoring import CrawlerMonitor
from ..utils.retry import RetryPolicy


Ancestors = Tuple[CrawlURI, ...]


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    uris_admitted: int = 0
    uris_rejected: int = 0
    uris_classified: int = 0
    documents_expanded: int = 0
    downloads_dispatched: int = 0
    errors: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.monotonic() - self.start_time


class CrawlerScheduler:
    """
    Coordinates classification, traversal and downloads for one crawl.

    Every distinct URI is classified at most once: the first branch to reach
    it creates the classification task, later branches await the same task.
    Failures are cached as IGNORE and never unwind past ``visit``.
    """

    def __init__(self, config, fetcher: Optional[WebFetcher] = None,
                 downloader: Optional[DownloadManager] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.monitor = monitor

        retry_policy = RetryPolicy(max_attempts=config.retry_attempts, delay=config.retry_delay)

        self.fetcher = fetcher or WebFetcher(
            user_agent=config.user_agent,
            referrer=config.referrer,
            request_timeout=config.request_timeout,
            retry_policy=retry_policy,
            max_connections=config.concurrent_requests + config.concurrent_downloads
        )
        self.downloader = downloader or DownloadManager(
            config, self.fetcher, retry_policy=retry_policy, monitor=monitor
        )
        self.classifier = Classifier(config, self.fetcher, ContentParser(), monitor=monitor)

        # Crawl state
        self.stats = CrawlStats(start_time=time.monotonic())
        self._outcomes: Dict[CrawlURI, asyncio.Task] = {}
        self._request_semaphore = asyncio.Semaphore(config.concurrent_requests)
        self._ceiling_logged = False

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Prepare the output directory and open the HTTP session."""
        # Fatal when the output directory cannot be created
        self.config.output_directory.mkdir(parents=True, exist_ok=True)

        await self.fetcher.start()

    async def close(self):
        """Cancel classifications still in flight, then close the HTTP session."""
        pending = [task for task in self._outcomes.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self.fetcher.close()

    async def run(self):
        """Crawl from the root URI until every branch is exhausted."""
        self.stats = CrawlStats(start_time=time.monotonic())
        root = self.config.root_uri

        self.logger.info(f"Crawling {root} (depth {self.config.maximum_depth}, "
                         f"at most {self.config.maximum_uris} URIs)")

        async with self:
            await self.visit(root, ())
            self._log_final_stats()

    async def visit(self, uri: CrawlURI, ancestors: Ancestors):
        """
        Visit a URI reached through ``ancestors``.

        Args:
            uri: The URI to visit
            ancestors: URIs on the path from the root to this one; its length
                is the current depth
        """
        if not self._admit(uri):
            return

        outcome = await self.resolve(uri)

        if outcome.kind is OutcomeKind.DOWNLOAD:
            await self._download(uri)

        elif outcome.kind is OutcomeKind.EXPAND:
            if len(ancestors) >= self.config.maximum_depth:
                return

            self.logger.info(f"{'  ' * len(ancestors)}{uri} ({len(outcome.children)} children)")

            branch = ancestors + (uri,)
            children = [child for child in outcome.children if child not in branch]
            await asyncio.gather(*(self.visit(child, branch) for child in children))

    def _admit(self, uri: CrawlURI) -> bool:
        # No await between increment and compare: one winner per slot
        self.stats.uris_admitted += 1

        if self.stats.uris_admitted > self.config.maximum_uris:
            self.stats.uris_admitted -= 1
            self.stats.uris_rejected += 1
            if not self._ceiling_logged:
                self._ceiling_logged = True
                self.logger.info(f"Reached maximum of {self.config.maximum_uris} URIs, "
                                 f"skipping further URIs such as {uri}")
            return False

        if self.monitor:
            self.monitor.record_admitted()
        return True

    async def resolve(self, uri: CrawlURI) -> VisitOutcome:
        """Memoized outcome of a URI, classifying it on first encounter."""
        task = self._outcomes.get(uri)
        if task is None:
            task = asyncio.ensure_future(self._classify(uri))
            self._outcomes[uri] = task

        return await asyncio.shield(task)

    async def _classify(self, uri: CrawlURI) -> VisitOutcome:
        try:
            async with self._request_semaphore:
                outcome = await self.classifier.classify(uri)
        except Exception as e:
            failure = e if isinstance(e, ClassificationFailure) else ClassificationFailure(uri, e)
            self.stats.errors += 1
            if self.monitor:
                self.monitor.record_error('classification')
            self.logger.warning(f"⚠ {failure}")
            outcome = IGNORE

        self.stats.uris_classified += 1
        if outcome.kind is OutcomeKind.EXPAND:
            self.stats.documents_expanded += 1
        if self.monitor:
            self.monitor.record_outcome(outcome.kind.value)

        self.logger.debug(f"Classified {uri}: {outcome.kind.value}")
        return outcome

    async def _download(self, uri: CrawlURI):
        self.stats.downloads_dispatched += 1
        try:
            await self.downloader.download(uri)
        except (SpongeError, OSError) as e:
            self.stats.errors += 1
            self.logger.warning(f"⚠ Error encountered while downloading {uri}: {root_cause_message(e)}")

    def outcome_of(self, uri: CrawlURI) -> Optional[VisitOutcome]:
        """Cached outcome of an already resolved URI."""
        task = self._outcomes.get(uri)
        if task is None or not task.done():
            return None
        return task.result()

    def _log_final_stats(self):
        download_stats = self.downloader.get_stats()
        fetch_stats = self.fetcher.get_stats()

        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"URIs admitted: {self.stats.uris_admitted}")
        self.logger.info(f"URIs classified: {self.stats.uris_classified}")
        self.logger.info(f"Requests: {fetch_stats['total_requests']} "
                         f"({fetch_stats['failed_requests']} failed)")
        self.logger.info(f"Documents expanded: {self.stats.documents_expanded}")
        self.logger.info(f"Downloads completed: {download_stats['downloads_completed']}")
        self.logger.info(f"Errors: {self.stats.errors}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")

        if self.monitor:
            self.logger.debug(f"Metrics: {self.monitor.get_summary()}")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'uris_admitted': self.stats.uris_admitted,
            'uris_rejected': self.stats.uris_rejected,
            'uris_classified': self.stats.uris_classified,
            'documents_expanded': self.stats.documents_expanded,
            'downloads_dispatched': self.stats.downloads_dispatched,
            'errors': self.stats.errors,
            'elapsed_time': self.stats.elapsed_time,
            'fetches': self.fetcher.get_stats(),
            'downloads': self.downloader.get_stats()
        }
