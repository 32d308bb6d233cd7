"""
Test helpers: a throwaway git "remote" and config/tree utilities.

The remote is a bare repository plus a working clone used to author
commits, so mirror and sync tests run against real git without touching
the network.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Optional

import pytest

from server_sync.config.loader import SyncConfig

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

GIT_IDENTITY = [
    "-c", "user.name=Server Sync Tests",
    "-c", "user.email=tests@example.com",
    "-c", "commit.gpgsign=false",
]


def git(cwd: Path, *args: str) -> str:
    """Run git for test setup; fail loudly."""
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
    )
    if result.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed: {result.stderr}")
    return result.stdout.strip()


class RemoteRepo:
    """A bare repository standing in for the remote, plus an authoring clone."""

    def __init__(self, root: Path, branch: str = "main"):
        self.branch = branch
        self.bare = root / "remote.git"
        self.work = root / "author"
        self.bare.mkdir(parents=True)
        self.work.mkdir(parents=True)

        git(self.bare, "init", "--bare", "-q")
        git(self.bare, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
        git(self.work, "init", "-q")
        git(self.work, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
        git(self.work, "remote", "add", "origin", str(self.bare))

    @property
    def url(self) -> str:
        return str(self.bare)

    def write(self, relative: str, content: str = "", executable: bool = False) -> Path:
        path = self.work / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        if executable:
            path.chmod(0o755)
        return path

    def remove(self, relative: str) -> None:
        (self.work / relative).unlink()

    def commit(self, message: str = "update", branch: Optional[str] = None) -> str:
        """Commit everything in the authoring clone and push it. Returns the sha."""
        branch = branch or self.branch
        git(self.work, "add", "-A")
        git(self.work, "commit", "-q", "--allow-empty", "-m", message)
        git(self.work, "push", "-q", "origin", f"HEAD:refs/heads/{branch}")
        return git(self.work, "rev-parse", "HEAD")

    def head(self, branch: Optional[str] = None) -> str:
        return git(self.bare, "rev-parse", f"refs/heads/{branch or self.branch}")


def make_config(
    remote: RemoteRepo,
    storage: Path,
    destination: Path,
    contexts=("dev",),
    **extra,
) -> SyncConfig:
    fields: Dict = dict(
        repo_url=remote.url,
        branch=remote.branch,
        destination=destination,
        active_contexts=frozenset(contexts),
        repo_storage=storage,
        owner_uid=os.getuid(),
        owner_gid=os.getgid(),
    )
    fields.update(extra)
    return SyncConfig(**fields)


def tree(root: Path) -> Dict[str, bytes]:
    """Relative path -> content for every regular file under root."""
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }
