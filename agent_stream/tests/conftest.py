"""Pytest fixtures and config."""

import pytest

from agent_stream.tests.helpers import FakeSleep


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up a real token or endpoint from the shell."""
    monkeypatch.delenv("AGENT_STREAM_TOKEN", raising=False)
    monkeypatch.delenv("API_BASE_URL", raising=False)
    monkeypatch.delenv("AGENT_STREAM_ENV", raising=False)
    yield


@pytest.fixture
def fake_sleep():
    return FakeSleep()
