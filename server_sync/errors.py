"""
Errors: the failure taxonomy of a sync run.

Every error is terminal for the current invocation. The CLI turns any
ServerSyncError into a non-zero exit with a readable reason.

## Usage

    from server_sync.errors import MirrorError, MirrorErrorKind

    try:
        ensure_mirror(...)
    except MirrorError as e:
        if e.kind is MirrorErrorKind.CHECKOUT_MISSING_BRANCH:
            ...
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class ServerSyncError(Exception):
    """Base class for all expected failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return self.message


class ConfigError(ServerSyncError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.field = field
        super().__init__(message, details)

    def _format_message(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class MirrorErrorKind(str, Enum):
    CLONE = "clone"
    FETCH = "fetch"
    CHECKOUT_MISSING_BRANCH = "checkout_missing_branch"
    CORRUPT = "corrupt"


class MirrorError(ServerSyncError):
    """Raised when the local repository mirror cannot be brought up to date."""

    def __init__(
        self,
        kind: MirrorErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        super().__init__(message, details)

    def _format_message(self) -> str:
        return f"mirror {self.kind.value}: {self.message}"


class DeployErrorKind(str, Enum):
    WRITE = "write"
    OWNERSHIP = "ownership"


class DeployError(ServerSyncError):
    """Raised when a selected file cannot be written or chowned."""

    def __init__(
        self,
        kind: DeployErrorKind,
        path: Path,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.path = Path(path)
        super().__init__(message, details)

    def _format_message(self) -> str:
        return f"deploy {self.kind.value} failed for {self.path}: {self.message}"
