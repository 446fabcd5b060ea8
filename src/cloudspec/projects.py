"""Projects: the top-level build target."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from .blueprints import Blueprint
from .context import Context

logger = logging.getLogger(__name__)


class Project(BaseModel):
    """A deployable unit: AWS settings plus the blueprints to converge."""

    model_config = {"arbitrary_types_allowed": True}

    name: str
    description: str = ""
    region: str | None = None
    profile: str | None = None
    blueprints: list[Blueprint] = Field(default_factory=list)

    def context(self, **kwargs: Any) -> Context:
        """Create a Context targeting this project. kwargs are passed to Context."""
        return Context(target=self, **kwargs)

    def build(self, **kwargs: Any) -> None:
        """Build all blueprints. kwargs are passed to Context."""
        ctx = self.context(**kwargs)
        logger.info("Building project '%s' (region=%s)", self.name, ctx.region or "default")
        for blueprint in self.blueprints:
            blueprint.build(ctx)
