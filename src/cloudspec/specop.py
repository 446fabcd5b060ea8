"""SpecOp strategies: when a blueprint entry touches its remote object."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .context import Context
from .spec import Specification, describe

logger = logging.getLogger(__name__)


class SpecOp[P](ABC):
    """Wraps a Specification with the check that decides whether to act.

    Subclasses provide ``pending`` (the check) and ``act``; dry runs log
    the action instead of performing it.
    """

    verb: str = ""
    doing: str = ""
    skip_reason: str = ""

    def __init__(self, spec: Specification[P]) -> None:
        self.spec = spec

    @abstractmethod
    def pending(self, ctx: Context[P]) -> bool:
        """True if the remote side needs this op's action."""

    @abstractmethod
    def act(self, ctx: Context[P]) -> None: ...

    def __call__(self, ctx: Context[P]) -> None:
        name = describe(self.spec)
        if not self.pending(ctx):
            logger.debug("Skipping %s; %s", name, self.skip_reason)
        elif ctx.dry_run:
            logger.info("[DRY RUN] Would %s %s", self.verb, name)
        else:
            logger.info("%s %s", self.doing, name)
            self.act(ctx)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({describe(self.spec)})"


class Present[P](SpecOp[P]):
    """Create only if the remote object doesn't exist."""

    verb = "create"
    doing = "Creating"
    skip_reason = "already exists"

    def pending(self, ctx: Context[P]) -> bool:
        return not self.spec.exists(ctx)

    def act(self, ctx: Context[P]) -> None:
        self.spec.apply(ctx)


class Ensure[P](SpecOp[P]):
    """Converge if the remote object doesn't match."""

    verb = "apply"
    doing = "Applying"
    skip_reason = "up to date"

    def pending(self, ctx: Context[P]) -> bool:
        return not self.spec.equals(ctx)

    def act(self, ctx: Context[P]) -> None:
        self.spec.apply(ctx)


class Absent[P](SpecOp[P]):
    """Delete if the remote object exists."""

    verb = "remove"
    doing = "Removing"
    skip_reason = "not present"

    def pending(self, ctx: Context[P]) -> bool:
        return self.spec.exists(ctx)

    def act(self, ctx: Context[P]) -> None:
        self.spec.remove(ctx)


STRATEGIES: dict[str, type[SpecOp]] = {
    "present": Present,
    "ensure": Ensure,
    "absent": Absent,
}
