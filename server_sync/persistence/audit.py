"""
Run Ledger: append-only NDJSON record of sync runs.

Each line is one JSON object (newline-delimited JSON).
Events are never edited, only appended.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4


class AuditWriter:
    """
    Append-only NDJSON run ledger writer.

    Usage:
        audit = AuditWriter(Path("/var/log/server-sync/ledger.ndjson"))
        audit.emit("sync_start", run_id="R-123", details={"branch": "main"})
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._ensure_exists()

    def _ensure_exists(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch()

    def emit(
        self,
        event_type: str,
        run_id: str,
        level: str = "info",
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Append one event.

        Args:
            event_type: sync_start, sync_end, sync_failed
            run_id: Identifier of the run the event belongs to
            level: info, warning, error
            details: Additional event details

        Returns:
            Generated event_id
        """
        event_id = f"E-{uuid4().hex[:8].upper()}"
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        entry: Dict[str, Any] = {
            "ts_iso": now,
            "event_id": event_id,
            "run_id": run_id,
            "level": level,
            "type": event_type,
        }
        if details is not None:
            entry["details"] = details

        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")

        return event_id

    def emit_sync_start(
        self,
        run_id: str,
        repo: str,
        branch: str,
        contexts: list,
        destination: str,
        dry_run: bool,
    ) -> str:
        return self.emit(
            event_type="sync_start",
            run_id=run_id,
            details={
                "repo": repo,
                "branch": branch,
                "contexts": contexts,
                "destination": destination,
                "dry_run": dry_run,
            },
        )

    def emit_sync_end(
        self,
        run_id: str,
        commit: Optional[str],
        files_selected: int,
        files_written: int,
        duration_ms: int,
    ) -> str:
        return self.emit(
            event_type="sync_end",
            run_id=run_id,
            details={
                "commit": commit,
                "files_selected": files_selected,
                "files_written": files_written,
                "duration_ms": duration_ms,
            },
        )

    def emit_sync_failed(
        self,
        run_id: str,
        stage: str,
        error: str,
        duration_ms: int,
    ) -> str:
        return self.emit(
            event_type="sync_failed",
            run_id=run_id,
            level="error",
            details={
                "stage": stage,
                "error": error,
                "duration_ms": duration_ms,
            },
        )
