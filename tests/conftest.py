"""
Pytest config.

Pins the repo root on sys.path so `import patron_gate` works without an install, and
resets the cached relay configuration around every test so env changes take effect.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


_RELAY_ENV_VARS = (
    "PATREON_CLIENT_ID",
    "PATREON_CLIENT_SECRET",
    "PATREON_CAMPAIGN_ID",
    "PATREON_CREATOR_ID",
    "REDIRECT_URI",
    "ALLOWED_ORIGINS",
    "RELAY_UPSTREAM_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _isolated_relay_config(monkeypatch: pytest.MonkeyPatch):
    """Start every test from an empty relay environment and a cold config cache."""
    from patron_gate.relay.config import load_relay_config

    for name in _RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    load_relay_config.cache_clear()
    yield
    load_relay_config.cache_clear()


@pytest.fixture
def relay_env(monkeypatch: pytest.MonkeyPatch):
    """A fully configured relay environment."""
    from patron_gate.relay.config import load_relay_config

    monkeypatch.setenv("PATREON_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("PATREON_CLIENT_SECRET", "test-client-secret-value")
    monkeypatch.setenv("PATREON_CAMPAIGN_ID", "camp-1")
    monkeypatch.setenv("PATREON_CREATOR_ID", "creator-1")
    monkeypatch.setenv("REDIRECT_URI", "https://site.example/patreon-callback")
    load_relay_config.cache_clear()
    return monkeypatch


def pytest_collection_modifyitems(config, items):  # type: ignore[no-untyped-def]
    """E2E tests need a running relay; skip them unless RELAY_E2E_BASE_URL is set."""
    if os.getenv("RELAY_E2E_BASE_URL"):
        return
    skip_e2e = pytest.mark.skip(reason="RELAY_E2E_BASE_URL not set")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)
