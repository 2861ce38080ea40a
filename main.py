#!/usr/bin/env python3
"""
Main entry point for the sponge crawler.
"""

import asyncio
import argparse
import logging
import signal
import sys
from typing import List, Optional

from sponge import __version__
from sponge.crawler.scheduler import CrawlerScheduler
from sponge.errors import ConfigurationError
from sponge.utils.config import (
    Config,
    DEFAULT_CONCURRENT_DOWNLOADS,
    DEFAULT_CONCURRENT_REQUESTS,
    DEFAULT_MAXIMUM_DEPTH,
    DEFAULT_MAXIMUM_URIS,
    DEFAULT_REFERRER,
    MonitoringConfig,
    load_config,
)
from sponge.utils.logger import setup_logging
from sponge.utils.monitoring import CrawlerMonitor, MetricsCollector


class CrawlerApp:
    """Main application class for the crawler."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._request_shutdown, signum)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform, KeyboardInterrupt still applies
                pass

    def _request_shutdown(self, signum):
        self.logger.info(f"Received signal {signum}, initiating shutdown...")
        self._shutdown_event.set()

    def setup_monitoring(self, config: MonitoringConfig) -> CrawlerMonitor:
        collector = MetricsCollector(config.metrics_enabled, config.prometheus_port)
        collector.start_prometheus_server()
        return CrawlerMonitor(collector)

    async def run(self, config: Config) -> int:
        """Run the crawler until completion or shutdown."""
        self._shutdown_event = asyncio.Event()
        self.setup_signal_handlers()

        crawl = config.crawler
        self.logger.info("=== SPONGE STARTING ===")
        self.logger.info(f"Root URI: {crawl.root_uri}")
        self.logger.info(f"Output directory: {crawl.output_directory}")
        self.logger.info(f"Mime types: {', '.join(sorted(crawl.mime_types)) or '-'}")
        self.logger.info(f"File extensions: {', '.join(sorted(crawl.file_extensions)) or '-'}")
        self.logger.info(f"Max depth: {crawl.maximum_depth}, max URIs: {crawl.maximum_uris}")
        self.logger.info(f"Concurrent requests: {crawl.concurrent_requests}, "
                         f"concurrent downloads: {crawl.concurrent_downloads}")

        monitor = self.setup_monitoring(config.monitoring)
        self.scheduler = CrawlerScheduler(crawl, monitor=monitor)

        crawl_task = asyncio.create_task(self.scheduler.run())
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())

        # Wait for either crawling to complete or shutdown signal
        done, pending = await asyncio.wait(
            [crawl_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED
        )

        # Cancel pending tasks; the scheduler closes its session on the way out
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if shutdown_task in done:
            self.logger.info("Shutdown requested, crawl stopped")
        else:
            # Re-raises fatal errors such as an uncreatable output directory
            crawl_task.result()

        self.logger.info("=== SPONGE FINISHED ===")
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sponge',
        description="Crawl a site and download the resources matching mime types or file extensions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sponge -u https://example.com -o out -t application/pdf
  sponge -u https://example.com -o out -e png -e jpg -d 2 -s
  sponge -c sponge.yaml -R 4 -D 2
        """
    )

    parser.add_argument('-u', '--uri', help='URI (example: https://www.google.com)')
    parser.add_argument('-o', '--output', help='Output directory where files are downloaded')
    parser.add_argument('-t', '--mime-type', dest='mime_types', action='append',
                        help='Mime types to download (example: text/plain)')
    parser.add_argument('-e', '--file-extension', dest='file_extensions', action='append',
                        help='Extensions to download (example: png)')
    parser.add_argument('-d', '--depth', dest='maximum_depth', type=positive_int,
                        help=f'Search depth (default: {DEFAULT_MAXIMUM_DEPTH})')
    parser.add_argument('-m', '--max-uris', dest='maximum_uris', type=positive_int,
                        help=f'Maximum URIs to visit (default: {DEFAULT_MAXIMUM_URIS})')
    parser.add_argument('-s', '--include-subdomains', action='store_true', default=None,
                        help='Include subdomains')
    parser.add_argument('-R', '--concurrent-requests', type=positive_int,
                        help=f'Concurrent requests (default: {DEFAULT_CONCURRENT_REQUESTS})')
    parser.add_argument('-D', '--concurrent-downloads', type=positive_int,
                        help=f'Concurrent downloads (default: {DEFAULT_CONCURRENT_DOWNLOADS})')
    parser.add_argument('-O', '--overwrite', dest='overwrite_existing_files',
                        action='store_true', default=None, help='Overwrite existing files')
    parser.add_argument('-r', '--referrer', help=f'Referrer (default: {DEFAULT_REFERRER})')
    parser.add_argument('-U', '--user-agent', help='User agent')
    parser.add_argument('-c', '--config', help='Optional YAML configuration file')
    parser.add_argument('--metrics-port', type=positive_int,
                        help='Expose Prometheus metrics on this port')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--version', action='version', version=f'sponge {__version__}')

    return parser


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value} is not an integer")
    if number < 1:
        raise argparse.ArgumentTypeError(f"{value} must be at least 1")
    return number


def build_config(args: argparse.Namespace) -> Config:
    """Merge command-line arguments over the optional configuration file."""
    overrides = {
        'root_uri': args.uri,
        'output_directory': args.output,
        'mime_types': args.mime_types,
        'file_extensions': args.file_extensions,
        'maximum_depth': args.maximum_depth,
        'maximum_uris': args.maximum_uris,
        'include_subdomains': args.include_subdomains,
        'concurrent_requests': args.concurrent_requests,
        'concurrent_downloads': args.concurrent_downloads,
        'overwrite_existing_files': args.overwrite_existing_files,
        'referrer': args.referrer,
        'user_agent': args.user_agent,
    }
    config = load_config(args.config, overrides)

    if args.metrics_port:
        config = Config(
            crawler=config.crawler,
            logging=config.logging,
            monitoring=MonitoringConfig(metrics_enabled=True, prometheus_port=args.metrics_port)
        )

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        parser.error(str(e))

    setup_logging(config.logging, verbose=args.verbose)

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Unexpected error encountered: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
