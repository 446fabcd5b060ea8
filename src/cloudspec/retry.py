"""Retry helper for calls against eventually-consistent APIs."""

from __future__ import annotations

import logging
from collections.abc import Callable

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_delay,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)


def retry_call[T](
    fn: Callable[[], T],
    *,
    timeout: float,
    retryable: Callable[[BaseException], bool],
    min_delay: float = 1.0,
    max_delay: float = 10.0,
) -> T:
    """Call ``fn`` until it succeeds, retrying errors accepted by ``retryable``.

    Once ``timeout`` seconds have passed, the last error is re-raised.
    Errors that are not retryable propagate on the first occurrence.
    """
    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_exponential_jitter(initial=min_delay, max=max_delay, jitter=min_delay),
        retry=retry_if_exception(retryable),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )
    return retrying(fn)
