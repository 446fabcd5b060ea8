"""Generic poll-until-target-state waiter.

A waiter repeatedly calls a status fetcher and blocks until the reported
status lands in one of the caller's declared sets:

    spec = WaitSpec(pending={"CREATING"}, target={"ACTIVE"}, timeout=600)
    fleet = wait(spec, fleet_status(client, "my-fleet"))

Fetchers close over whatever client and identifier they need and return a
PollResult. A result with no resource means the remote object was not found;
how that is interpreted is decided by the WaitSpec's ``not_found`` policy.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_delay,
    wait_exponential_jitter,
    wait_fixed,
)

from .errors import (
    FatalStateError,
    NotFoundError,
    TransientError,
    UnexpectedStateError,
    WaitCancelledError,
    WaitError,
    WaitTimeoutError,
)

logger = logging.getLogger(__name__)

GONE = "<gone>"
"""Status reported for a missing resource under the GONE policy."""


class NotFound(StrEnum):
    """How a poll that finds no resource is interpreted."""

    RETRY = "retry"
    GONE = "gone"
    ERROR = "error"


@dataclass(frozen=True)
class PollResult:
    """A single observation of a remote resource."""

    resource: Any = None
    status: str = ""

    @property
    def found(self) -> bool:
        return self.resource is not None


type StatusFetcher = Callable[[], PollResult]


class WaitSpec(BaseModel):
    """Stop conditions and pacing for a single wait."""

    model_config = ConfigDict(frozen=True)

    pending: frozenset[str] = frozenset()
    target: frozenset[str] = Field(min_length=1)
    fatal: frozenset[str] = frozenset()
    timeout: float = Field(gt=0)
    min_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    not_found: NotFound = NotFound.RETRY

    @model_validator(mode="after")
    def _check_sets(self) -> WaitSpec:
        pairs = (
            ("pending", "target"),
            ("pending", "fatal"),
            ("target", "fatal"),
        )
        for a, b in pairs:
            overlap = getattr(self, a) & getattr(self, b)
            if overlap:
                raise ValueError(f"{a} and {b} share states: {', '.join(sorted(overlap))}")
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must not exceed max_delay")
        if self.not_found is NotFound.GONE and GONE not in self.known:
            raise ValueError("not_found=GONE requires the GONE state in pending, target or fatal")
        return self

    @property
    def known(self) -> frozenset[str]:
        return self.pending | self.target | self.fatal


def is_transient(exc: BaseException) -> bool:
    """Default fetch error classifier: only TransientError keeps polling."""
    return isinstance(exc, TransientError)


def _backoff(spec: WaitSpec) -> Callable[[RetryCallState], float]:
    """Delay between polls, capped at the time left before the deadline."""
    if spec.min_delay == spec.max_delay:
        strategy = wait_fixed(spec.min_delay)
    else:
        initial = spec.min_delay or spec.max_delay / 8
        strategy = wait_exponential_jitter(initial=initial, max=spec.max_delay, jitter=initial)

    def delay(retry_state: RetryCallState) -> float:
        remaining = spec.timeout - (retry_state.seconds_since_start or 0.0)
        return max(0.0, min(strategy(retry_state), remaining))

    return delay


def wait(
    spec: WaitSpec,
    fetch: StatusFetcher,
    *,
    transient: Callable[[BaseException], bool] = is_transient,
    cancel: threading.Event | None = None,
) -> Any:
    """Block until ``fetch`` reports a target state; return the resource.

    Raises FatalStateError, UnexpectedStateError, WaitTimeoutError or
    WaitCancelledError for the corresponding outcomes. Errors raised by
    ``fetch`` that ``transient`` does not accept propagate unchanged.
    """
    cancel = cancel if cancel is not None else threading.Event()
    started = time.monotonic()
    last = PollResult()

    def poll() -> PollResult:
        nonlocal last
        if cancel.is_set():
            raise WaitCancelledError(last.status, last.resource)

        result = fetch()
        if not result.found:
            if spec.not_found is NotFound.ERROR:
                raise NotFoundError("resource not found while waiting for state")
            if spec.not_found is NotFound.GONE:
                result = PollResult(None, GONE)

        logger.debug("Polled state '%s'", result.status if result.status else "<not found>")
        last = result
        return result

    def pending(result: PollResult) -> bool:
        if not result.found and result.status != GONE:
            return True
        return result.status in spec.pending

    retrying = Retrying(
        stop=stop_after_delay(spec.timeout),
        wait=_backoff(spec),
        retry=(
            retry_if_result(pending)
            | retry_if_exception(
                lambda exc: not isinstance(exc, WaitError | NotFoundError) and transient(exc)
            )
        ),
        sleep=cancel.wait,
    )

    try:
        result = retrying(poll)
    except RetryError as exc:
        elapsed = time.monotonic() - started
        if cancel.is_set():
            raise WaitCancelledError(last.status, last.resource) from None
        cause = exc.last_attempt.exception()
        raise WaitTimeoutError(last.status, elapsed, last.resource) from cause

    if result.status in spec.target:
        logger.debug("Reached target state '%s'", result.status)
        return result.resource
    if result.status in spec.fatal:
        raise FatalStateError(result.status, result.resource)
    raise UnexpectedStateError(result.status, spec.target | spec.pending, result.resource)
