"""
Sync Run: the mirror → select → deploy pipeline.

Each run walks a fixed sequence of stages:

    START → MIRROR_READY → FILES_SELECTED → DEPLOYED → DONE

Any step may instead end the run in FAILED. Nothing is retried and
nothing downstream of a failed step runs. A deploy failure leaves the
files already written in place.

## Run ID Format

    R-{YYYYMMDD}T{HHMMSS}-{RANDOM}
    Example: R-20260204T221903-92929A

## Usage

    from server_sync.engine.sync import run_sync

    result = run_sync(config)
    if not result.ok:
        print(f"{result.failed_step}: {result.error}")
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..config.loader import SyncConfig
from ..errors import ServerSyncError
from ..mirror.manager import RepositoryMirror, ensure_mirror
from ..persistence.audit import AuditWriter
from .deploy import deploy_files
from .walker import SelectedFile, select_files

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    START = "start"
    MIRROR_READY = "mirror_ready"
    FILES_SELECTED = "files_selected"
    DEPLOYED = "deployed"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    run_id: str
    started_at: str
    ended_at: Optional[str] = None
    duration_ms: int = 0

    stage: Stage = Stage.START
    failed_step: Optional[str] = None  # mirror, select, deploy
    error: Optional[str] = None
    error_kind: Optional[str] = None

    commit: Optional[str] = None
    cloned: bool = False
    files_selected: int = 0
    files_written: int = 0
    directories_created: int = 0
    backups: int = 0
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.stage is Stage.DONE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        data["ok"] = self.ok
        return data


def generate_run_id() -> str:
    """Generate a unique run ID."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    suffix = uuid4().hex[:6].upper()
    return f"R-{ts}-{suffix}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class _StepFailed(Exception):
    def __init__(self, step: str, error: Exception):
        self.step = step
        self.error = error
        super().__init__(str(error))


def run_sync(
    config: SyncConfig,
    dry_run: bool = False,
    audit_writer: Optional[AuditWriter] = None,
) -> SyncResult:
    """
    Run one sync from start to finish.

    Expected failures (ServerSyncError) end the run in Stage.FAILED with
    the reason recorded; they are not raised. Anything else propagates.

    Args:
        config: Loaded configuration
        dry_run: Mirror and select as usual, but only report what would be written
        audit_writer: Run ledger (optional)

    Returns:
        SyncResult with the stage reached and counts
    """
    start_time = time.time()
    result = SyncResult(run_id=generate_run_id(), started_at=_now_iso(), dry_run=dry_run)
    contexts = sorted(config.active_contexts)
    log_extra = {"run_id": result.run_id}

    logger.info(
        f"{'═' * 50}\n"
        f"  Starting Sync {result.run_id}\n"
        f"  ├─ Repo: {config.display_repo} ({config.branch})\n"
        f"  ├─ Contexts: {', '.join(contexts)}\n"
        f"  ├─ Destination: {config.destination}\n"
        f"  └─ Mode: {'DRY RUN' if dry_run else 'LIVE'}\n"
        f"{'─' * 50}",
        extra=log_extra,
    )

    if audit_writer:
        audit_writer.emit_sync_start(
            run_id=result.run_id,
            repo=config.display_repo,
            branch=config.branch,
            contexts=contexts,
            destination=str(config.destination),
            dry_run=dry_run,
        )

    def advance(stage: Stage) -> None:
        result.stage = stage
        logger.debug(f"Stage → {stage.value}", extra={**log_extra, "stage": stage.value})

    try:
        # --- Step 1: Mirror ---
        try:
            mirror: RepositoryMirror = ensure_mirror(
                config.repo_url,
                config.branch,
                config.repo_storage,
                timeout=config.git_timeout,
            )
        except ServerSyncError as e:
            raise _StepFailed("mirror", e)
        result.commit = mirror.commit
        result.cloned = mirror.cloned
        advance(Stage.MIRROR_READY)

        # --- Step 2: Select ---
        try:
            selected: List[SelectedFile] = select_files(mirror.path, config.active_contexts)
        except (OSError, ValueError) as e:
            raise _StepFailed("select", e)
        result.files_selected = len(selected)
        logger.info(f"Selected {len(selected)} file(s) for {', '.join(contexts)}", extra=log_extra)
        advance(Stage.FILES_SELECTED)

        # --- Step 3: Deploy ---
        try:
            deployed = deploy_files(
                selected,
                config.destination,
                config.owner_uid,
                config.owner_gid,
                backup=config.backup,
                dry_run=dry_run,
            )
        except ServerSyncError as e:
            raise _StepFailed("deploy", e)
        result.files_written = deployed.files_written
        result.directories_created = len(deployed.directories_created)
        result.backups = len(deployed.backups)
        advance(Stage.DEPLOYED)

    except _StepFailed as failure:
        result.stage = Stage.FAILED
        result.failed_step = failure.step
        result.error = str(failure.error)
        kind = getattr(failure.error, "kind", None)
        result.error_kind = kind.value if kind is not None else type(failure.error).__name__
        _finish(result, start_time)

        logger.error(f"Sync failed during {failure.step}: {result.error}", extra=log_extra)
        if audit_writer:
            audit_writer.emit_sync_failed(
                run_id=result.run_id,
                stage=failure.step,
                error=result.error,
                duration_ms=result.duration_ms,
            )
        return result

    advance(Stage.DONE)
    _finish(result, start_time)

    verb = "would write" if dry_run else "wrote"
    logger.info(
        f"Sync complete: {verb} {result.files_written} file(s) "
        f"from {(result.commit or '')[:12]} in {result.duration_ms}ms",
        extra=log_extra,
    )
    if audit_writer:
        audit_writer.emit_sync_end(
            run_id=result.run_id,
            commit=result.commit,
            files_selected=result.files_selected,
            files_written=result.files_written,
            duration_ms=result.duration_ms,
        )
    return result


def _finish(result: SyncResult, start_time: float) -> None:
    result.ended_at = _now_iso()
    result.duration_ms = int((time.time() - start_time) * 1000)
