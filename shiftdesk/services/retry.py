import logging
import time
from typing import Callable, TypeVar

from shiftdesk.core.errors import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 5.0


def backoff_wait(attempt: int, base_seconds: float) -> float:
    """Deterministic exponential backoff.

    attempt <= 0 => 0s, attempt n => base * 2**(n - 1), capped at MAX_BACKOFF_SECONDS.
    """
    n = int(attempt) if attempt is not None else 0
    if n <= 0:
        return 0.0
    return min(MAX_BACKOFF_SECONDS, float(base_seconds) * (2 ** (n - 1)))


def call_with_retries(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base_seconds: float = 0.2,
    operation: str = "ledger call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn``, retrying only on TransientIOError.

    Domain errors propagate on the first raise. After the last attempt the
    TransientIOError is re-raised for the caller to surface as "sync failed".
    """
    attempts = max(1, int(attempts))
    attempt = 1
    while True:
        try:
            return fn()
        except TransientIOError:
            if attempt >= attempts:
                logger.error(
                    "Transient failure; retries exhausted",
                    extra={"operation": operation, "attempts": attempts},
                )
                raise

            wait = backoff_wait(attempt, base_seconds)
            logger.warning(
                "Transient failure; retrying",
                extra={"operation": operation, "attempt": attempt, "wait_seconds": wait},
            )
            sleep(wait)
            attempt += 1
