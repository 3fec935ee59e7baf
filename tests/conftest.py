"""Shared test fixtures for mnno-school tests."""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from mnno_school.app import app
from mnno_school.settings import settings


class FakeClock:
    """Manually advanced clock injected into the cache, coordinator and snapshots."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def anyio_backend():
    """Run ``@pytest.mark.anyio`` tests on asyncio only; the services use asyncio tasks."""
    return "asyncio"


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    """Keep snapshots in a temp dir and never talk to real third-party APIs."""
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    monkeypatch.setattr(settings, "supabase_url", "https://project.supabase.co")
    monkeypatch.setattr(settings, "supabase_key", "anon-key")
    monkeypatch.setattr(settings, "openai_api_key", "")
    monkeypatch.setattr(settings, "loom_api_key", "")
    monkeypatch.setattr(settings, "video_poll_interval_seconds", 0.01)


@pytest.fixture(autouse=True)
def _propagate_logs(monkeypatch):
    """Let caplog see records from the app logger configured by ``_setup_logging``."""
    monkeypatch.setattr(logging.getLogger("mnno_school"), "propagate", True)


@pytest.fixture()
def client():
    """Create a FastAPI test client; the lifespan builds a fresh data-access context."""
    with TestClient(app) as c:
        yield c
