"""Shared fixtures: a fake boto3 session whose clients are MagicMocks."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from cloudspec.context import Context
from cloudspec.projects import Project
from cloudspec.resources import appstream, directoryservice, route53


class FakeSession:
    """Stands in for boto3.Session; one MagicMock client per service."""

    def __init__(self) -> None:
        self.clients: dict[str, MagicMock] = {}
        self.calls: list[tuple[str, str | None]] = []

    def client(self, service: str, region_name: str | None = None) -> MagicMock:
        self.calls.append((service, region_name))
        return self.clients.setdefault(service, MagicMock(name=service))


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def ctx(session) -> Context[Project]:
    return Context(target=Project(name="test", region="us-east-1"), session=session)


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip the back-off sleeps of retried API calls."""
    monkeypatch.setattr(time, "sleep", lambda seconds: None)


@pytest.fixture
def fast_polls(monkeypatch):
    """Poll resource waits every millisecond so they can pass through pending states."""
    for module, name in (
        (appstream, "FLEET_POLL_DELAY"),
        (directoryservice, "DIRECTORY_POLL_DELAY"),
        (directoryservice, "SHARE_POLL_DELAY"),
        (route53, "INSTANCE_POLL_DELAY"),
    ):
        monkeypatch.setattr(module, name, (0.001, 0.001))
