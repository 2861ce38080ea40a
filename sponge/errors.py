"""
Exception hierarchy for the sponge crawler.
"""

import asyncio
from typing import Optional


class SpongeError(Exception):
    """Base class for all crawler errors."""
    pass


class InvalidURI(SpongeError, ValueError):
    """Raised when a string cannot be normalized into a crawlable URI."""
    pass


class ConfigurationError(SpongeError, ValueError):
    """Raised for invalid configuration combinations. Fatal at startup."""
    pass


class TransientIOError(SpongeError, IOError):
    """Network or read failure that is worth retrying."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ClassificationFailure(SpongeError):
    """Escalated error raised while resolving the outcome of a URI."""

    def __init__(self, uri, cause: BaseException):
        super().__init__(f"Failed to classify {uri}: {root_cause_message(cause)}")
        self.uri = uri
        self.cause = cause


class DownloadFailure(SpongeError):
    """Escalated error raised while transferring a file."""

    def __init__(self, uri, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to download {uri}: {message}")
        self.uri = uri
        self.cause = cause


def root_cause(error: BaseException) -> BaseException:
    """
    Walk explicit causes and wrapped causes down to the innermost error.

    Cancellations chained under a timeout are asyncio internals, the walk
    stops at the timeout instead.
    """
    seen = set()
    current = error

    while id(current) not in seen:
        seen.add(id(current))
        nested = getattr(current, 'cause', None) or current.__cause__
        if nested is None or isinstance(nested, asyncio.CancelledError):
            break
        current = nested

    return current


def root_cause_message(error: BaseException) -> str:
    """Human readable message of the innermost error."""
    cause = root_cause(error)
    message = str(cause)
    return message if message else type(cause).__name__
