"""
Retry policy shared by classification fetches and downloads.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ..errors import TransientIOError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry restricted to a narrow set of exception types."""
    max_attempts: int = 3
    delay: float = 1.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientIOError,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must be non-negative")

    async def call(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``fn(*args, **kwargs)``, retrying on the configured exception types.

        The last exception is re-raised once attempts are exhausted; any other
        exception propagates on the first occurrence.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)

    def _log_retry(self, retry_state: RetryCallState):
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.max_attempts} failed: {error}; "
            f"retrying in {self.delay:.1f}s"
        )
