"""
Mirror Manager: keep the local clone at repo storage on the remote branch head.

The mirror is disposable state owned by this tool. The first run clones
it; every later run fetches and force-resets it, discarding local commits,
edits, and untracked files.

## Storage states

    missing / empty dir      → clone
    checkout (top level)     → fetch + hard reset
    broken checkout (.git)   → delete, then clone
    anything else            → MirrorError(CORRUPT), left untouched

A clone happens in a temporary sibling directory and is moved into place
only once the branch is checked out, so a failed first run leaves repo
storage as it found it. An existing empty storage directory (often a
mount point) is filled in place, never removed.

## Usage

    from server_sync.mirror.manager import ensure_mirror

    mirror = ensure_mirror(url, "main", Path("/var/lib/server-sync/repo"))
    print(mirror.commit)
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..errors import MirrorError, MirrorErrorKind
from .git import DEFAULT_TIMEOUT, error_text, git_output, redact_url, run_git, scrub

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepositoryMirror:
    """A working copy sitting on the remote branch head."""

    path: Path
    branch: str
    commit: str
    cloned: bool = False


class StorageState(str, Enum):
    MISSING = "missing"
    EMPTY = "empty"
    CHECKOUT = "checkout"
    BROKEN = "broken"
    FOREIGN = "foreign"


class MirrorManager:
    """Clones or updates one branch of one remote into one directory."""

    def __init__(
        self,
        repo_url: str,
        branch: str,
        storage: Path,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.repo_url = repo_url
        self.branch = branch
        self.storage = Path(storage)
        self.timeout = timeout

    @property
    def display_url(self) -> str:
        return redact_url(self.repo_url)

    @property
    def remote_ref(self) -> str:
        return f"refs/remotes/origin/{self.branch}"

    # ─── Entry point ────────────────────────────────────────

    def ensure(self) -> RepositoryMirror:
        """
        Bring the mirror to the remote branch head.

        Raises:
            MirrorError: CLONE, FETCH, CHECKOUT_MISSING_BRANCH or CORRUPT
        """
        self._check_branch_name()
        state = self.inspect_storage()
        logger.debug(f"[mirror] Storage {self.storage} is {state.value}")

        if state is StorageState.FOREIGN:
            raise MirrorError(
                MirrorErrorKind.CORRUPT,
                f"{self.storage} exists but is not a repository checkout; "
                "refusing to overwrite it",
                details={"storage": str(self.storage)},
            )

        if state is StorageState.BROKEN:
            logger.warning(
                f"[mirror] {self.storage} is an unusable checkout, re-cloning"
            )
            try:
                shutil.rmtree(self.storage)
            except OSError as e:
                raise MirrorError(
                    MirrorErrorKind.CORRUPT, f"cannot remove broken checkout: {e}"
                )
            state = StorageState.MISSING

        if state is StorageState.CHECKOUT:
            return self._update()
        return self._clone()

    def inspect_storage(self) -> StorageState:
        """Classify what is currently at the storage path."""
        storage = self.storage
        if not storage.exists() and not storage.is_symlink():
            return StorageState.MISSING
        if not storage.is_dir():
            return StorageState.FOREIGN
        if not any(storage.iterdir()):
            return StorageState.EMPTY

        toplevel = git_output(storage, "rev-parse", "--show-toplevel", timeout=self.timeout)
        if toplevel and Path(toplevel).resolve() == storage.resolve():
            return StorageState.CHECKOUT

        if (storage / ".git").exists():
            return StorageState.BROKEN
        return StorageState.FOREIGN

    # ─── Clone ──────────────────────────────────────────────

    def _clone(self) -> RepositoryMirror:
        logger.info(f"[mirror] Cloning {self.display_url} ({self.branch})")

        parent = self.storage.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
            tmp_path = Path(tempfile.mkdtemp(prefix=f".{self.storage.name}.clone-", dir=parent))
        except OSError as e:
            raise MirrorError(MirrorErrorKind.CLONE, f"cannot prepare {parent}: {e}")

        try:
            result = run_git(
                parent,
                "clone", "--no-checkout", "--origin", "origin",
                "--", self.repo_url, str(tmp_path),
                timeout=self.timeout,
            )
            if result.returncode != 0:
                raise MirrorError(
                    MirrorErrorKind.CLONE,
                    scrub(error_text(result), self.repo_url),
                    details={"repo": self.display_url},
                )

            self._require_remote_branch(tmp_path)
            self._checkout(tmp_path, MirrorErrorKind.CLONE)
            commit = self._head(tmp_path, MirrorErrorKind.CLONE)
            self._install(tmp_path)
        finally:
            if tmp_path.exists():
                shutil.rmtree(tmp_path, ignore_errors=True)

        logger.info(f"[mirror] Cloned {self.branch} at {commit[:12]}")
        return RepositoryMirror(self.storage, self.branch, commit, cloned=True)

    def _install(self, clone: Path) -> None:
        """
        Put a finished clone at the storage path.

        An existing (empty) storage directory may be a mount point, so it
        is filled in place rather than replaced. ``.git`` goes first: if a
        later move fails, the next run sees a checkout and resets it.
        """
        try:
            if not self.storage.is_dir():
                shutil.move(str(clone), str(self.storage))
                return

            entries = sorted(clone.iterdir(), key=lambda p: (p.name != ".git", p.name))
            for entry in entries:
                shutil.move(str(entry), str(self.storage / entry.name))
        except OSError as e:
            raise MirrorError(
                MirrorErrorKind.CLONE,
                f"cannot move clone into {self.storage}: {e}",
                details={"storage": str(self.storage)},
            )

    # ─── Update ─────────────────────────────────────────────

    def _update(self) -> RepositoryMirror:
        repo = self.storage
        previous = git_output(repo, "rev-parse", "--verify", "--quiet", "HEAD", timeout=self.timeout)

        self._ensure_origin(repo)

        logger.info(f"[mirror] Fetching {self.display_url}")
        result = run_git(
            repo,
            "fetch", "--prune", "origin", "+refs/heads/*:refs/remotes/origin/*",
            timeout=self.timeout,
        )
        if result.returncode != 0:
            raise MirrorError(
                MirrorErrorKind.FETCH,
                scrub(error_text(result), self.repo_url),
                details={"repo": self.display_url},
            )

        self._require_remote_branch(repo)
        self._checkout(repo, MirrorErrorKind.CORRUPT)

        result = run_git(repo, "clean", "-ffdx", timeout=self.timeout)
        if result.returncode != 0:
            raise MirrorError(MirrorErrorKind.CORRUPT, f"clean failed: {error_text(result)}")

        commit = self._head(repo, MirrorErrorKind.CORRUPT)
        if previous == commit:
            logger.info(f"[mirror] Already up to date at {commit[:12]}")
        else:
            logger.info(
                f"[mirror] Updated {self.branch}: "
                f"{(previous or 'none')[:12]} → {commit[:12]}"
            )
        return RepositoryMirror(repo, self.branch, commit, cloned=False)

    def _ensure_origin(self, repo: Path) -> None:
        """Point origin at the configured URL (it may carry a rotated token)."""
        current = git_output(repo, "remote", "get-url", "origin", timeout=self.timeout)
        if current == self.repo_url:
            return

        if current is None:
            logger.info(f"[mirror] Adding origin → {self.display_url}")
            result = run_git(repo, "remote", "add", "origin", self.repo_url, timeout=self.timeout)
        else:
            logger.info(f"[mirror] Updating origin URL → {self.display_url}")
            result = run_git(repo, "remote", "set-url", "origin", self.repo_url, timeout=self.timeout)

        if result.returncode != 0:
            raise MirrorError(
                MirrorErrorKind.CORRUPT,
                f"cannot configure origin: {scrub(error_text(result), self.repo_url)}",
            )

    # ─── Shared steps ───────────────────────────────────────

    def _check_branch_name(self) -> None:
        result = run_git(
            self.storage.parent if self.storage.parent.is_dir() else Path.cwd(),
            "check-ref-format", "--branch", self.branch,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            raise MirrorError(
                MirrorErrorKind.CHECKOUT_MISSING_BRANCH,
                f"'{self.branch}' is not a valid branch name",
            )

    def _require_remote_branch(self, repo: Path) -> None:
        found = git_output(
            repo, "rev-parse", "--verify", "--quiet", f"{self.remote_ref}^{{commit}}",
            timeout=self.timeout,
        )
        if not found:
            raise MirrorError(
                MirrorErrorKind.CHECKOUT_MISSING_BRANCH,
                f"branch '{self.branch}' does not exist on {self.display_url}",
                details={"branch": self.branch},
            )

    def _checkout(self, repo: Path, kind: MirrorErrorKind) -> None:
        for args in (
            ("checkout", "--force", "-B", self.branch, self.remote_ref),
            ("reset", "--hard", self.remote_ref),
        ):
            result = run_git(repo, *args, timeout=self.timeout)
            if result.returncode != 0:
                raise MirrorError(kind, f"git {args[0]} failed: {error_text(result)}")

    def _head(self, repo: Path, kind: MirrorErrorKind) -> str:
        head = git_output(repo, "rev-parse", "HEAD", timeout=self.timeout)
        remote = git_output(repo, "rev-parse", self.remote_ref, timeout=self.timeout)
        if not head or head != remote:
            raise MirrorError(
                kind,
                f"HEAD ({head or 'unresolved'}) does not match origin/{self.branch} "
                f"({remote or 'unresolved'})",
            )
        return head


def ensure_mirror(
    repo_url: str,
    branch: str,
    repo_storage: Path,
    timeout: int = DEFAULT_TIMEOUT,
) -> RepositoryMirror:
    """Clone or update ``repo_storage``. See MirrorManager.ensure."""
    return MirrorManager(repo_url, branch, repo_storage, timeout).ensure()
