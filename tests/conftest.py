"""
Shared fixtures.

Mirror and sync tests get a local bare repository as their remote and
temporary storage/destination paths, so nothing touches the network or
the real filesystem outside tmp_path.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

import pytest

from helpers import RemoteRepo


@pytest.fixture(autouse=True)
def _restore_logging():
    """setup_logging() rewires the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    """Keep the operator's own SERVER_SYNC_* settings out of the tests."""
    for name in list(os.environ):
        if name.startswith("SERVER_SYNC_") or name in ("LOG_LEVEL", "LOG_FORMAT"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def remote(tmp_path: Path) -> RemoteRepo:
    """Remote with one commit: a.txt (untagged) and b.txt@prod."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = RemoteRepo(tmp_path / "upstream")
    repo.write("a.txt", "shared\n")
    repo.write("b.txt@prod", "prod only\n")
    repo.commit("initial")
    return repo


@pytest.fixture
def storage(tmp_path: Path) -> Path:
    return tmp_path / "storage" / "mirror"


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    return tmp_path / "srv" / "app"
