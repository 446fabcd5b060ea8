"""Specification ABC plus the resource and data source registries."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .context import Context

_spec_registry: dict[str, type] = {}
_data_registry: dict[str, type] = {}


def spec(name: str):
    """Register a Specification class as an HCL block decoder."""

    def decorator(cls):
        _spec_registry[name] = cls
        cls.spec_name = name
        return cls

    return decorator


def data_source(name: str):
    """Register a read-only lookup under ``name``."""

    def decorator(cls):
        _data_registry[name] = cls
        cls.spec_name = name
        return cls

    return decorator


def describe(obj: Any) -> str:
    """Human-readable label for log lines: registered name plus identity."""
    name = getattr(obj, "spec_name", None) or type(obj).__name__
    label = getattr(obj, "label", None)
    return f"{name} '{label}'" if label else name


class Specification[P](ABC):
    """Desired state of one remote object.

    ``exists`` and ``equals`` inspect the remote side; ``apply`` converges
    it to the declared state and ``remove`` deletes it.
    """

    @abstractmethod
    def equals(self, ctx: Context[P]) -> bool:
        """Remote state matches the declared state."""

    def exists(self, ctx: Context[P]) -> bool:
        """Remote object exists (defaults to equals)."""
        return self.equals(ctx)

    @abstractmethod
    def apply(self, ctx: Context[P]) -> None:
        """Create, update or replace the remote object."""

    @abstractmethod
    def remove(self, ctx: Context[P]) -> None:
        """Delete the remote object."""
