"""
Owner resolution: turn UID/USER and GID/GROUP into numeric ids.

A numeric UID (GID) wins. Otherwise USER (GROUP) is looked up in the
system user (group) database. A USER or GROUP that is itself numeric is
taken as an id.
"""

from __future__ import annotations

import grp
import logging
import pwd
from typing import Mapping, Optional

from ..errors import ConfigError

logger = logging.getLogger(__name__)


def _numeric(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    return None


def resolve_uid(env: Mapping[str, str]) -> int:
    """Resolve the file owner from UID, falling back to USER."""
    uid = _numeric(env.get("UID"))
    if uid is not None:
        return uid

    user = (env.get("USER") or "").strip()
    if not user:
        raise ConfigError("set UID or USER to choose the file owner", field="UID/USER")

    uid = _numeric(user)
    if uid is not None:
        return uid

    try:
        return pwd.getpwnam(user).pw_uid
    except KeyError:
        raise ConfigError(f"unknown user '{user}'", field="USER")


def resolve_gid(env: Mapping[str, str]) -> int:
    """Resolve the file group from GID, falling back to GROUP."""
    gid = _numeric(env.get("GID"))
    if gid is not None:
        return gid

    group = (env.get("GROUP") or "").strip()
    if not group:
        raise ConfigError("set GID or GROUP to choose the file group", field="GID/GROUP")

    gid = _numeric(group)
    if gid is not None:
        return gid

    try:
        return grp.getgrnam(group).gr_gid
    except KeyError:
        raise ConfigError(f"unknown group '{group}'", field="GROUP")
