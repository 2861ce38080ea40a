"""
Download subsystem: deduplicated, bounded, retried file transfers.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Set
from urllib.parse import unquote

import aiofiles
from aiohttp import ClientError

from ..crawler.uri import CrawlURI
from ..errors import DownloadFailure, TransientIOError, root_cause_message
from ..utils.monitoring import CrawlerMonitor
from ..utils.retry import RetryPolicy


CHUNK_SIZE = 64 * 1024
DEFAULT_FILENAME = 'index'
PART_SUFFIX = '.part'


@dataclass(frozen=True)
class DownloadRecord:
    """Result of a completed transfer."""
    uri: CrawlURI
    path: Path
    size: int
    elapsed: float

    @property
    def throughput(self) -> float:
        """Bytes per second."""
        return self.size / self.elapsed if self.elapsed > 0 else float(self.size)

    @property
    def human_size(self) -> str:
        return human_readable_size(self.size)


def human_readable_size(size: float) -> str:
    for unit in ('bytes', 'KB', 'MB', 'GB'):
        if size < 1024 or unit == 'GB':
            return f"{size:.0f} {unit}" if unit == 'bytes' else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def _safe_segment(segment: str) -> str:
    name = unquote(segment).replace('/', '_').replace('\\', '_').replace('\x00', '_')
    return '_' if name in ('', '.', '..') else name


def target_path(output_directory: Path, uri: CrawlURI) -> Path:
    """
    Deterministic location of a downloaded URI:
    ``output_directory / host / directory-of-path / filename``.
    """
    path = Path(output_directory) / uri.host

    for segment in uri.directory.split('/'):
        if segment:
            path /= _safe_segment(segment)

    return path / (_safe_segment(uri.filename) if uri.filename else DEFAULT_FILENAME)


class DownloadManager:
    """
    Performs file transfers for downloadable URIs.

    Each target path is dispatched at most once per run, whether the first
    attempt succeeded, was skipped or failed. Transfers run inside their own
    semaphore so download throughput is tuned independently of crawl breadth.
    """

    def __init__(self, config, fetcher, retry_policy: Optional[RetryPolicy] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.fetcher = fetcher
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.retry_attempts, delay=config.retry_delay
        )
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self._dispatched: Set[Path] = set()
        self._semaphore = asyncio.Semaphore(config.concurrent_downloads)

        self.stats: Dict[str, int] = {
            'downloads_completed': 0,
            'downloads_failed': 0,
            'duplicates_skipped': 0,
            'existing_skipped': 0,
            'bytes_downloaded': 0
        }

    def target_path(self, uri: CrawlURI) -> Path:
        return target_path(self.config.output_directory, uri)

    async def download(self, uri: CrawlURI) -> Optional[DownloadRecord]:
        """
        Download a URI to its target path.

        Args:
            uri: The URI to download

        Returns:
            DownloadRecord for a completed transfer, None when the transfer
            was skipped as a duplicate or because the file already exists

        Raises:
            DownloadFailure: when the transfer failed after retries
        """
        path = self.target_path(uri)

        if path in self._dispatched:
            self.stats['duplicates_skipped'] += 1
            self.logger.debug(f"Already dispatched {uri} -> {path}")
            return None
        self._dispatched.add(path)

        if not self.config.overwrite_existing_files and path.exists():
            self.stats['existing_skipped'] += 1
            self.logger.info(f"✓ {path} already exists")
            return None

        async with self._semaphore:
            start_time = time.monotonic()
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                size = await self.retry_policy.call(self._transfer, uri, path)
            except DownloadFailure:
                self._record_failure()
                raise
            except (TransientIOError, OSError) as e:
                self._record_failure()
                raise DownloadFailure(uri, root_cause_message(e), e) from e

            record = DownloadRecord(uri=uri, path=path, size=size,
                                    elapsed=time.monotonic() - start_time)

        self.stats['downloads_completed'] += 1
        self.stats['bytes_downloaded'] += record.size
        if self.monitor:
            self.monitor.record_download(record.size, record.elapsed)

        self.logger.info(f"⬇ {record.path} [{record.human_size}, "
                         f"{human_readable_size(record.throughput)}/s]")
        return record

    async def _transfer(self, uri: CrawlURI, path: Path) -> int:
        part_path = path.with_name(path.name + PART_SUFFIX)
        size = 0

        async with self.fetcher.stream(uri) as response:
            if not 200 <= response.status < 300:
                raise DownloadFailure(uri, f"HTTP {response.status}")

            try:
                async with aiofiles.open(part_path, 'wb') as f:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        await f.write(chunk)
                        size += len(chunk)
            except (ClientError, asyncio.TimeoutError) as e:
                part_path.unlink(missing_ok=True)
                raise TransientIOError(f"Error reading {uri}: {str(e) or type(e).__name__}", e) from e
            except BaseException:
                part_path.unlink(missing_ok=True)
                raise

        os.replace(part_path, path)
        return size

    def _record_failure(self):
        self.stats['downloads_failed'] += 1
        if self.monitor:
            self.monitor.record_error('download')

    def get_stats(self) -> Dict[str, int]:
        """Get download statistics."""
        return self.stats.copy()
