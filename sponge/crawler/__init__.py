"""
Web crawler core components.
"""

from .uri import CrawlURI, normalize, is_visitable_host
from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser, ParsedContent
from .classifier import Classifier, VisitOutcome, Expand, DOWNLOAD, IGNORE

__all__ = [
    'CrawlURI', 'normalize', 'is_visitable_host',
    'WebFetcher', 'FetchResult',
    'ContentParser', 'ParsedContent',
    'Classifier', 'VisitOutcome', 'Expand', 'DOWNLOAD', 'IGNORE'
]
