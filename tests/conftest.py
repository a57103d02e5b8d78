"""Pytest configuration and shared fixtures."""

import pytest

from chowder_client.config import ENV_OVERRIDES


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep the developer's own gateway settings out of tests."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CHOWDER_CONFIG", str(tmp_path / "absent-config.yaml"))
