from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff bounded by attempt count rather than wall-clock time."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def delays(self) -> list[float]:
        return [min(self.max_delay, self.base_delay * (2**attempt)) for attempt in range(self.max_retries)]

    def run(
        self,
        operation: Callable[[], T],
        *,
        retry_on: tuple[type[BaseException], ...],
        sleeper: Callable[[float], None] = time.sleep,
        label: str = "operation",
    ) -> T:
        delays = self.delays()
        attempt = 0
        while True:
            try:
                return operation()
            except retry_on as exc:
                if attempt >= len(delays):
                    logger.error("%s failed after %d retries: %s", label, attempt, exc)
                    raise
                delay = delays[attempt]
                attempt += 1
                logger.warning("%s failed (%s); retry %d/%d in %.1fs", label, exc, attempt, len(delays), delay)
                sleeper(delay)
