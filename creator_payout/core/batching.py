"""
Chunking and retry helpers shared by the jobs.
"""

from typing import Callable, Iterable, Iterator, List, TypeVar

from tenacity import Retrying, stop_after_attempt

from creator_payout.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def chunked(iterable: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive lists of at most `size` items."""
    if size <= 0:
        raise ValueError("chunk size must be positive")

    buffer: List[T] = []
    for item in iterable:
        buffer.append(item)
        if len(buffer) == size:
            yield buffer.copy()
            buffer.clear()

    if buffer:
        yield buffer.copy()


def _log_retry(retry_state) -> None:
    logger.warning(
        "Retrying after failure",
        operation=getattr(retry_state.fn, "__name__", repr(retry_state.fn)),
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
    )


def with_retries(operation: Callable[[], T], retries: int) -> T:
    """Run `operation`, retrying immediately up to `retries` extra times.

    Args:
        operation: Zero-argument callable to run
        retries: Additional attempts after the first failure

    Returns:
        The operation's return value

    Raises:
        ValueError: If retries is negative
        Exception: The last failure once all attempts are used
    """
    if retries < 0:
        raise ValueError("retries cannot be negative")

    retrying = Retrying(
        stop=stop_after_attempt(retries + 1),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(operation)
