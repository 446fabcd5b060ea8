"""Runtime execution context for the build pipeline."""

from __future__ import annotations

import logging
from typing import Any

import boto3

logger = logging.getLogger(__name__)


class Context[P]:
    """Runtime state passed through the build chain.

    API clients are created from the context's session on first use and
    cached for the lifetime of the context; nothing is shared between
    contexts.
    """

    def __init__(
        self,
        target: P,
        *,
        dry_run: bool = False,
        session: Any = None,
        region: str | None = None,
    ) -> None:
        self.target = target
        self.dry_run = dry_run
        self.region = region if region is not None else getattr(target, "region", None)
        self._session = session
        self._clients: dict[str, Any] = {}

    @property
    def session(self) -> Any:
        if self._session is None:
            profile = getattr(self.target, "profile", None)
            logger.debug("Creating AWS session (profile=%s, region=%s)", profile, self.region)
            self._session = boto3.Session(profile_name=profile, region_name=self.region)
        return self._session

    def client(self, service: str) -> Any:
        """Return the API client for ``service``."""
        if service not in self._clients:
            self._clients[service] = self.session.client(service, region_name=self.region)
        return self._clients[service]
