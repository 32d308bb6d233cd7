"""
Context Matcher: decide whether a repository path belongs to a run.

Context tags live in the repository tree itself. Any path segment (file
or directory) may end in ``@<tags>``, where ``<tags>`` is one or more
context names separated by ``;`` or ``,``:

    nginx/site.conf@prod          only for prod
    nginx@prod;staging/site.conf  everything under nginx/ for prod or staging
    motd                          untagged

Context names match ``[A-Za-z0-9_-]+``. There is no escaping, so a
segment such as ``user@host.conf`` is not tagged (``host.conf`` is not a
valid context name) and deploys under its literal name.

A path is selected when every tagged segment names at least one active
context. Untagged paths follow UNTAGGED_POLICY.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import PurePosixPath
from typing import FrozenSet, Iterable, List, Tuple, Union

TAG_MARKER = "@"
CONTEXT_NAME_PATTERN = r"[A-Za-z0-9_-]+"

_CONTEXT_NAME_RE = re.compile(rf"^{CONTEXT_NAME_PATTERN}$")
_SEPARATOR_RE = re.compile(r"[;,]")
_TAGGED_SEGMENT_RE = re.compile(
    rf"^(?P<name>.+){TAG_MARKER}"
    rf"(?P<tags>{CONTEXT_NAME_PATTERN}(?:[;,]{CONTEXT_NAME_PATTERN})*)$"
)

PathLike = Union[str, PurePosixPath]


class UntaggedPolicy(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


# Untagged files are shared by every context.
UNTAGGED_POLICY = UntaggedPolicy.INCLUDE


def is_valid_context_name(name: str) -> bool:
    return bool(_CONTEXT_NAME_RE.match(name))


def parse_context_list(raw: str) -> List[str]:
    """Split a ``prod;dev`` (or ``prod,dev``) list, dropping blanks and repeats."""
    seen: List[str] = []
    for part in _SEPARATOR_RE.split(raw or ""):
        name = part.strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def split_segment(segment: str) -> Tuple[str, FrozenSet[str]]:
    """
    Split one path segment into its deployed name and its tags.

    Returns the segment unchanged with an empty tag set when untagged.
    """
    match = _TAGGED_SEGMENT_RE.match(segment)
    if not match:
        return segment, frozenset()
    tags = frozenset(_SEPARATOR_RE.split(match.group("tags")))
    return match.group("name"), tags


def segment_tags(path: PathLike) -> List[FrozenSet[str]]:
    """Tag sets of the tagged segments of ``path``, outermost first."""
    result = []
    for part in PurePosixPath(path).parts:
        _, tags = split_segment(part)
        if tags:
            result.append(tags)
    return result


def declared_tags(path: PathLike) -> FrozenSet[str]:
    """Union of every context named anywhere in ``path``."""
    tags: FrozenSet[str] = frozenset()
    for segment in segment_tags(path):
        tags = tags | segment
    return tags


def strip_tags(path: PathLike) -> PurePosixPath:
    """Remove every ``@<tags>`` suffix, giving the deployed relative path."""
    parts = [split_segment(part)[0] for part in PurePosixPath(path).parts]
    return PurePosixPath(*parts) if parts else PurePosixPath()


def matches(
    path: PathLike,
    active_contexts: Iterable[str],
    untagged_policy: UntaggedPolicy = UNTAGGED_POLICY,
) -> bool:
    """
    Whether ``path`` should be deployed for ``active_contexts``.

    Pure: looks only at the path string, never at the filesystem.
    """
    active = frozenset(active_contexts)
    tagged = segment_tags(path)

    if not tagged:
        return untagged_policy is UntaggedPolicy.INCLUDE

    return all(tags & active for tags in tagged)
