"""
Result objects for update runs.

Provides a single report structure that the CLI renders as a summary or
JSON, and that the exit code is taken from.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .messages import WarningItem


class Outcome(Enum):
    """Terminal outcome of one pipeline run."""
    NO_UPDATE = "no_update"
    UPDATED = "updated"
    DRY_RUN = "dry_run"
    FAILED = "failed"


@dataclass
class UpdateReport:
    """
    Unified result object for one orchestrator run.

    Attributes:
        ok: Whether the run ended without a fatal error
        outcome: Terminal outcome
        remote_version: Version advertised by the distribution (0 if degraded)
        local_version: Persisted version before the run
        image_path: Firmware image selected from the package
        wait_seconds: Resolved post-handshake delay
        acked: Whether the device acknowledged the announcement
        stage: Last stage entered (resolve, retrieve, handshake, flash, commit)
        exit_code: Process exit code for the scheduler
        warnings: Non-fatal conditions encountered
        errors: Fatal error messages
        metadata: Additional stage-specific data (programmer command, sizes)
    """
    ok: bool
    outcome: Outcome
    remote_version: int = 0
    local_version: int = 0
    image_path: Optional[str] = None
    wait_seconds: Optional[int] = None
    acked: bool = False
    stage: str = ""
    exit_code: int = 0
    warnings: List[WarningItem] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_warning(self, item: WarningItem) -> None:
        """Add a structured warning."""
        self.warnings.append(item)

    def fail(self, message: str, exit_code: int) -> None:
        """Record a fatal error and mark the report as failed."""
        self.errors.append(message)
        self.ok = False
        self.outcome = Outcome.FAILED
        self.exit_code = exit_code

    def to_summary(self) -> str:
        """Human-readable summary for CLI output or log files."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.outcome.value}"]
        lines.append(f"  Remote version: {self.remote_version}")
        lines.append(f"  Local version:  {self.local_version}")
        if self.image_path:
            lines.append(f"  Image: {self.image_path}")
        if self.wait_seconds is not None:
            source = "device ack" if self.acked else "default"
            lines.append(f"  Wait: {self.wait_seconds}s ({source})")
        if not self.ok and self.stage:
            lines.append(f"  Failed stage: {self.stage}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn.title}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "outcome": self.outcome.value,
            "remote_version": self.remote_version,
            "local_version": self.local_version,
            "image_path": self.image_path,
            "wait_seconds": self.wait_seconds,
            "acked": self.acked,
            "stage": self.stage,
            "exit_code": self.exit_code,
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": self.errors,
            "metadata": self.metadata,
        }
