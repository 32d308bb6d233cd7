"""
Deployment Writer: copy selected files into the destination tree.

Each file is written to a temporary name next to its target, given its
mode and owner, then renamed over the target. A reader of the destination
sees either the old file or the new one, never a partial copy.

Directories are created one level at a time and each new one gets the
configured owner. Directories that already existed are left alone.

## Usage

    from server_sync.engine.deploy import deploy_files

    result = deploy_files(selected, Path("/srv/app"), owner_uid=33, owner_gid=33)
    print(result.files_written)
"""

from __future__ import annotations

import difflib
import filecmp
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Set

from ..errors import DeployError, DeployErrorKind
from .walker import SelectedFile

logger = logging.getLogger(__name__)

FILE_MODE = 0o644
EXEC_FILE_MODE = 0o755
DIR_MODE = 0o755
BACKUP_SUFFIX = ".bak"


@dataclass
class DeployResult:
    """What a deployment did (or would do, on a dry run)."""

    files_written: int = 0
    directories_created: List[str] = field(default_factory=list)
    backups: List[str] = field(default_factory=list)
    dry_run: bool = False


def _reason(error: OSError) -> str:
    return error.strerror or str(error)


class DeploymentWriter:
    """Writes SelectedFiles under one destination with one owner."""

    def __init__(
        self,
        destination: Path,
        owner_uid: int,
        owner_gid: int,
        backup: bool = False,
        dry_run: bool = False,
    ):
        self.destination = Path(destination)
        self.owner_uid = owner_uid
        self.owner_gid = owner_gid
        self.backup = backup
        self.dry_run = dry_run
        self._known_dirs: Set[Path] = set()

    def deploy(self, files: Iterable[SelectedFile]) -> DeployResult:
        """
        Write every file, stopping at the first failure.

        Raises:
            DeployError: WRITE on I/O failure, OWNERSHIP if chown fails
        """
        result = DeployResult(dry_run=self.dry_run)

        for selected in files:
            target = self.destination.joinpath(*selected.relative.parts)
            self._ensure_dirs(selected.relative.parent, result)

            if self.dry_run:
                logger.info(f"[deploy] Would write {selected.relative}")
            else:
                self._write_file(selected.source, target, result)
                logger.debug(f"[deploy] Wrote {selected.relative}")
            result.files_written += 1

        return result

    # ─── Directories ────────────────────────────────────────

    def _ensure_dirs(self, relative_dir: PurePosixPath, result: DeployResult) -> None:
        current = self.destination
        self._make_dir(current, result)
        for part in relative_dir.parts:
            current = current / part
            self._make_dir(current, result)

    def _make_dir(self, path: Path, result: DeployResult) -> None:
        if path in self._known_dirs:
            return

        if path.is_dir():
            self._known_dirs.add(path)
            return

        if path.exists() or path.is_symlink():
            raise DeployError(DeployErrorKind.WRITE, path, "exists and is not a directory")

        self._known_dirs.add(path)
        result.directories_created.append(str(path))

        if self.dry_run:
            logger.info(f"[deploy] Would create directory {path}")
            return

        logger.debug(f"[deploy] Creating directory {path}")
        try:
            path.mkdir(mode=DIR_MODE)
            os.chmod(path, DIR_MODE)
        except OSError as e:
            raise DeployError(DeployErrorKind.WRITE, path, _reason(e))

        self._chown(path)

    # ─── Files ──────────────────────────────────────────────

    def _write_file(self, source: Path, target: Path, result: DeployResult) -> None:
        if target.is_dir() and not target.is_symlink():
            raise DeployError(DeployErrorKind.WRITE, target, "a directory is in the way")

        try:
            executable = source.stat().st_mode & 0o111
        except OSError as e:
            raise DeployError(DeployErrorKind.WRITE, target, f"cannot read source: {_reason(e)}")
        mode = EXEC_FILE_MODE if executable else FILE_MODE

        if target.is_file() and not target.is_symlink():
            if logger.isEnabledFor(logging.DEBUG):
                self._log_diff(source, target)
            if self.backup:
                self._backup(source, target, result)

        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
            )
        except OSError as e:
            raise DeployError(DeployErrorKind.WRITE, target, _reason(e))

        tmp_path = Path(tmp_name)
        try:
            try:
                with os.fdopen(fd, "wb") as out, source.open("rb") as src:
                    shutil.copyfileobj(src, out)
                os.chmod(tmp_path, mode)
            except OSError as e:
                raise DeployError(DeployErrorKind.WRITE, target, _reason(e))

            self._chown(tmp_path, reported_as=target)

            try:
                os.replace(tmp_path, target)
            except OSError as e:
                raise DeployError(DeployErrorKind.WRITE, target, _reason(e))
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _backup(self, source: Path, target: Path, result: DeployResult) -> None:
        try:
            if filecmp.cmp(source, target, shallow=False):
                return
            backup_path = target.with_name(target.name + BACKUP_SUFFIX)
            shutil.copy2(target, backup_path)
        except OSError as e:
            raise DeployError(DeployErrorKind.WRITE, target, f"backup failed: {_reason(e)}")

        self._chown(backup_path)
        result.backups.append(str(backup_path))
        logger.info(f"[deploy] Backed up {target} to {backup_path.name}")

    def _log_diff(self, source: Path, target: Path) -> None:
        try:
            new = source.read_text(encoding="utf-8").splitlines()
            old = target.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError):
            return

        for line in difflib.unified_diff(
            old, new, fromfile=str(target), tofile=str(source), lineterm=""
        ):
            logger.debug(f"[deploy] {line}")

    def _chown(self, path: Path, reported_as: Path | None = None) -> None:
        try:
            os.chown(path, self.owner_uid, self.owner_gid)
        except OSError as e:
            raise DeployError(
                DeployErrorKind.OWNERSHIP,
                reported_as or path,
                f"cannot set owner {self.owner_uid}:{self.owner_gid}: {_reason(e)}",
            )


def deploy_files(
    files: Iterable[SelectedFile],
    destination: Path,
    owner_uid: int,
    owner_gid: int,
    backup: bool = False,
    dry_run: bool = False,
) -> DeployResult:
    """Write ``files`` under ``destination``. See DeploymentWriter.deploy."""
    writer = DeploymentWriter(
        destination, owner_uid, owner_gid, backup=backup, dry_run=dry_run
    )
    return writer.deploy(files)
