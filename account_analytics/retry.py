"""Exponential backoff for transient store failures."""

import logging
import time
from typing import Callable, TypeVar

from account_analytics.config import RetryConfig
from account_analytics.exceptions import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry a call on ``TransientStoreError`` with exponential backoff.

    Any other exception propagates immediately. After ``max_attempts``
    failures the last ``TransientStoreError`` is re-raised.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = self.config.initial_delay_seconds * (self.config.multiplier ** (attempt - 1))
        return min(delay, self.config.max_delay_seconds)

    def call(self, operation: str, fn: Callable[..., T], *args, **kwargs) -> T:
        """Invoke ``fn(*args, **kwargs)`` under the retry policy.

        Parameters
        ----------
        operation : str
            Short label used in log messages.
        fn : Callable
            Store call to run.

        Returns
        -------
        T
            Whatever ``fn`` returns.
        """
        attempt = 1
        while True:
            try:
                return fn(*args, **kwargs)
            except TransientStoreError as e:
                if attempt >= self.config.max_attempts:
                    logger.error("%s failed after %d attempts: %s", operation, attempt, e)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    operation,
                    attempt,
                    self.config.max_attempts,
                    delay,
                    e,
                )
                self._sleep(delay)
                attempt += 1
