"""
Retry Policy

Explicit retry/backoff object injected into HTTP clients so the retry
behavior can be exercised without a network.
"""
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

import requests

from config.settings import settings
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds to wait after the first failure
        backoff_factor: Multiplier applied per further failure
        max_delay: Upper bound for a single wait
        retry_on: Exception types treated as transient
        sleep: Wait function (replaced in tests)
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    backoff_factor: float = 2.0
    max_delay: float = 60.0
    retry_on: Tuple[Type[BaseException], ...] = (requests.RequestException,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.etl_max_retries,
            base_delay=settings.etl_retry_base_delay_seconds,
            backoff_factor=settings.etl_retry_backoff_factor,
        )

    def delay_for(self, attempt: int) -> float:
        """
        Wait before the attempt following a failed `attempt` (1-based).

        Example (defaults): 2s after attempt 1, 4s after attempt 2.
        """
        return min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)

    def call(self, func: Callable[[], T], description: str = "operation") -> T:
        """
        Invoke func, retrying transient failures.

        Raises:
            The last transient exception once max_attempts is exhausted;
            non-transient exceptions immediately.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "retry_exhausted",
                        operation=description,
                        attempts=attempt,
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    "retrying_after_failure",
                    operation=description,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                    error=str(e),
                    error_type=type(e).__name__
                )
                self.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover
