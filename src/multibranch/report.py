"""Per-pass activity record of a branch synchronization."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import PerChildError


logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """What one reconciliation pass did, child by child."""

    project: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)
    builds_scheduled: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    errors: List[PerChildError] = field(default_factory=list)
    aborted: Optional[str] = None
    messages: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.aborted is None and not self.errors

    @property
    def topology_changed(self) -> bool:
        return bool(self.created or self.deleted)

    def note(self, message: str) -> None:
        self.messages.append(message)
        logger.info(f"[{self.project}] {message}")

    def skip(self, name: str, reason: str) -> None:
        self.skipped.append((name, reason))
        logger.info(f"[{self.project}] Skipped {name}: {reason}")

    def fail(self, name: str, operation: str, error: Exception) -> None:
        failure = PerChildError(name, operation, str(error))
        self.errors.append(failure)
        logger.error(f"[{self.project}] {failure}", exc_info=True)

    def abort(self, reason: str) -> None:
        self.aborted = reason
        logger.error(f"[{self.project}] Sync aborted: {reason}")

    def finish(self) -> "SyncReport":
        self.finished_at = datetime.now(timezone.utc)
        return self

    def summary(self) -> Dict[str, Any]:
        return {
            "project": self.project,
            "created": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "orphaned": len(self.orphaned),
            "builds_scheduled": len(self.builds_scheduled),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
            "aborted": self.aborted,
        }

    def render(self) -> str:
        """Text form of the report as written to the activity log."""
        lines = [f"Started on {self.started_at.isoformat()}"]
        lines.extend(self.messages)
        for name in self.created:
            lines.append(f"Created project for branch {name}")
        for name in self.deleted:
            lines.append(f"Deleted project for branch {name}")
        for name in self.orphaned:
            lines.append(f"Retained orphaned project for branch {name}")
        for name in self.updated:
            lines.append(f"Synced configuration to project for branch {name}")
        for name in self.builds_scheduled:
            lines.append(f"Scheduled build for branch {name}")
        for name, reason in self.skipped:
            lines.append(f"Skipped {name}: {reason}")
        for error in self.errors:
            lines.append(f"ERROR: {error}")
        if self.aborted:
            lines.append(f"FATAL: {self.aborted}")
        if self.finished_at is not None:
            took = (self.finished_at - self.started_at).total_seconds()
            lines.append(f"Done. Took {took:.1f} sec")
        return "\n".join(lines) + "\n"


def write_sync_log(path: Path, report: SyncReport) -> None:
    """Replace the project's activity log with the report of the latest pass."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(report.render())
            f.write("\n")
    except OSError as e:
        logger.warning(f"Failed to record sync log {path}: {e}")
