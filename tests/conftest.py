"""Test session configuration.

This module auto-loads environment variables from the project `.env` file so
integration tests can read the `PG*` connection settings without requiring the
developer to export them manually in the shell.
"""

from __future__ import annotations

import os

import pytest
from dotenv import load_dotenv


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    # Load once per test session; no error if .env is absent.
    load_dotenv()


@pytest.fixture
def clean_stream_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every PGSTREAM_* variable so settings fall back to defaults."""
    for name in list(os.environ):
        if name.startswith("PGSTREAM_"):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch
