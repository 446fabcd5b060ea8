"""Resolve ${...} references in spec attributes."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

_INTERP_PATTERN = re.compile(r"\$\$\{|(\$\{([^{}]+)\})")
_FULL_PATTERN = re.compile(r"\$\{([^{}]+)\}")


def default_context() -> dict[str, Any]:
    """Names every workspace can reference: the environment and the cwd."""
    return {"env": dict(os.environ), "CWD": os.getcwd}


class Resolver:
    """Resolve ${...} references in parsed attribute trees against a context.

    A value that is exactly one ``${ref}`` resolves to the referenced object
    itself, so numbers and lists keep their type. References embedded in a
    longer string are stringified. ``$${`` produces a literal ``${``.
    """

    def __init__(self, context: Mapping[str, Any] | None = None) -> None:
        self._context: dict[str, Any] = default_context()
        self._context.update(context or {})

    def lookup(self, ref: str) -> Any:
        """Resolve a dotted reference such as ``env.AWS_REGION``."""
        current: Any = self._context
        for part in ref.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            elif not isinstance(current, Mapping) and hasattr(current, part):
                current = getattr(current, part)
            else:
                raise ValueError(f"undefined variable '{ref}'")

        if callable(current) and not isinstance(current, type):
            current = current()
        return current

    def resolve_value(self, value: str) -> Any:
        if "${" not in value:
            return value

        match = _FULL_PATTERN.fullmatch(value)
        if match:
            return self.lookup(match.group(1).strip())

        def _replace(m: re.Match[str]) -> str:
            if m.group(0) == "$${":
                return "${"
            return str(self.lookup(m.group(2).strip()))

        return _INTERP_PATTERN.sub(_replace, value)

    def resolve(self, data: Any, path: str = "") -> Any:
        """Recursively resolve every string in ``data``.

        Errors name the dotted ``path`` of the offending value.
        """
        if isinstance(data, dict):
            return {k: self.resolve(v, f"{path}.{k}" if path else k) for k, v in data.items()}
        if isinstance(data, list):
            return [self.resolve(item, path) for item in data]
        if not isinstance(data, str):
            return data
        try:
            return self.resolve_value(data)
        except ValueError as exc:
            if path:
                raise ValueError(f"{path}: {exc}") from None
            raise
