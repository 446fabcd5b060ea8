"""botocore error classification helpers."""

from __future__ import annotations

from collections.abc import Callable

from botocore.exceptions import ClientError

from .errors import TransientError


def error_code(exc: BaseException | None) -> str | None:
    """Return the AWS error code carried by a ClientError, if any."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def error_code_equals(exc: BaseException | None, *codes: str) -> bool:
    """True if ``exc`` is a ClientError with one of ``codes``."""
    return error_code(exc) in codes


def error_message_contains(exc: BaseException | None, code: str, needle: str) -> bool:
    """True if ``exc`` has error ``code`` and its message contains ``needle``."""
    if not error_code_equals(exc, code):
        return False
    message = exc.response.get("Error", {}).get("Message", "")  # type: ignore[union-attr]
    return needle in message


def retry_codes(*codes: str) -> Callable[[BaseException], bool]:
    """Build a retry predicate matching the given error codes or TransientError."""

    def retryable(exc: BaseException) -> bool:
        return isinstance(exc, TransientError) or error_code_equals(exc, *codes)

    return retryable
