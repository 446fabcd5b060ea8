"""Exception types raised by cloudspec."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class CloudSpecError(Exception):
    """Base class for all cloudspec errors."""


class TransientError(CloudSpecError):
    """A condition that is expected to clear on its own; retry."""


class NotFoundError(CloudSpecError):
    """A remote object that was required does not exist."""


class ResourceError(CloudSpecError):
    """A resource lifecycle operation failed."""

    def __init__(self, verb: str, kind: str, ident: str | None, cause: BaseException | str) -> None:
        self.verb = verb
        self.kind = kind
        self.ident = ident
        super().__init__(f"error {verb} {kind} ({ident or ''}): {cause}")


# -- Waiter outcomes --


class WaitError(CloudSpecError):
    """Base class for terminal, unsuccessful waiter outcomes."""

    def __init__(self, message: str, *, status: str = "", resource: Any = None) -> None:
        self.status = status
        self.resource = resource
        super().__init__(message)


class FatalStateError(WaitError):
    """The resource reached a status declared unrecoverable."""

    def __init__(self, status: str, resource: Any = None) -> None:
        super().__init__(f"resource reached fatal state '{status}'", status=status, resource=resource)


class UnexpectedStateError(WaitError):
    """The resource reported a status outside every declared set."""

    def __init__(self, status: str, expected: Iterable[str], resource: Any = None) -> None:
        self.expected = sorted(expected)
        super().__init__(
            f"unexpected state '{status}', wanted one of: {', '.join(self.expected)}",
            status=status,
            resource=resource,
        )


class WaitTimeoutError(WaitError, TimeoutError):
    """The deadline passed while the resource was still pending."""

    def __init__(self, status: str, elapsed: float, resource: Any = None) -> None:
        self.elapsed = elapsed
        last = f"last state: '{status}'" if status else "no state observed"
        super().__init__(
            f"timeout while waiting for state after {elapsed:.1f}s ({last})",
            status=status,
            resource=resource,
        )


class WaitCancelledError(WaitError):
    """The caller cancelled the wait."""

    def __init__(self, status: str = "", resource: Any = None) -> None:
        super().__init__("wait cancelled", status=status, resource=resource)
