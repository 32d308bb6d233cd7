"""
File Selection Walker: list the mirror files that belong to this run.

The result is sorted by destination-relative path, so the same mirror
content and the same contexts always give the same sequence.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, FrozenSet, Iterable, List

from .contexts import matches, split_segment, strip_tags

logger = logging.getLogger(__name__)

VCS_DIRS = frozenset({".git"})
VCS_FILES = frozenset({".gitignore", ".gitattributes", ".gitmodules"})

# Files named .server-sync* configure the tool and are never deployed
TOOL_FILE_PREFIX = ".server-sync"
IGNORE_FILE = ".server-sync-ignore"


@dataclass(frozen=True)
class SelectedFile:
    """A mirror file and where it lands under the destination."""

    source: Path
    relative: PurePosixPath


def load_ignore_patterns(mirror_root: Path) -> List[str]:
    """
    Read glob patterns from the mirror's ignore file, if it has one.

    Raises:
        ValueError: If the ignore file is not valid UTF-8
    """
    path = mirror_root / IGNORE_FILE
    if not path.is_file():
        return []

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"{IGNORE_FILE} is not valid UTF-8: {e.reason} at byte {e.start}")

    patterns = []
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    logger.debug(f"Loaded {len(patterns)} ignore pattern(s) from {IGNORE_FILE}")
    return patterns


def is_ignored(relative: PurePosixPath, patterns: Iterable[str]) -> bool:
    """
    Match a deployed path against ignore patterns.

    ``dir/`` ignores everything below ``dir``; a pattern without a slash
    matches the file name; anything else matches the whole path.
    """
    text = relative.as_posix()
    for pattern in patterns:
        if pattern.endswith("/"):
            prefix = pattern.rstrip("/")
            if text == prefix or text.startswith(prefix + "/"):
                return True
        elif "/" not in pattern:
            if fnmatch.fnmatchcase(relative.name, pattern):
                return True
        elif fnmatch.fnmatchcase(text, pattern.lstrip("/")):
            return True
    return False


def _skip_dir(name: str, active: FrozenSet[str]) -> bool:
    base, tags = split_segment(name)
    if base in VCS_DIRS or base.startswith(TOOL_FILE_PREFIX):
        return True
    # A tagged directory for other contexts hides everything below it
    return bool(tags) and not (tags & active)


def _skip_file(name: str) -> bool:
    base = split_segment(name)[0]
    return base in VCS_FILES or base.startswith(TOOL_FILE_PREFIX)


def _raise(error: OSError) -> None:
    # An unreadable directory must not shrink the selection silently
    raise error


def select_files(mirror_root: Path, active_contexts: Iterable[str]) -> List[SelectedFile]:
    """
    Walk ``mirror_root`` and return the files selected for ``active_contexts``.

    Symlinks are not followed and are never selected. When two sources
    strip to the same destination path, the lexicographically last source
    wins.

    Raises:
        OSError: If a directory under ``mirror_root`` cannot be listed
        ValueError: If the ignore file cannot be decoded
    """
    root = Path(mirror_root)
    active = frozenset(active_contexts)
    patterns = load_ignore_patterns(root)
    chosen: Dict[PurePosixPath, SelectedFile] = {}

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise, followlinks=False):
        dirnames[:] = sorted(d for d in dirnames if not _skip_dir(d, active))

        for name in sorted(filenames):
            if _skip_file(name):
                continue

            source = Path(dirpath) / name
            relative = PurePosixPath(source.relative_to(root).as_posix())

            if source.is_symlink() or not source.is_file():
                logger.debug(f"Skipping non-regular file {relative}")
                continue

            if not matches(relative, active):
                logger.debug(f"Skipping {relative}: not in {sorted(active)}")
                continue

            target = strip_tags(relative)
            if is_ignored(target, patterns):
                logger.debug(f"Skipping {relative}: ignored")
                continue

            candidate = SelectedFile(source=source, relative=target)
            existing = chosen.get(target)
            if existing is not None:
                winner = max(existing, candidate, key=lambda f: f.source.as_posix())
                logger.warning(
                    f"Both {existing.source.relative_to(root)} and {relative} "
                    f"deploy to {target}; using {winner.source.relative_to(root)}"
                )
                candidate = winner
            chosen[target] = candidate

    selected = [chosen[key] for key in sorted(chosen, key=lambda p: p.as_posix())]
    logger.debug(f"Selected {len(selected)} file(s) for {sorted(active)}")
    return selected
