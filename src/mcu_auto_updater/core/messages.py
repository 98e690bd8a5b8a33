"""
Standardized warning and message system for the MCU auto-updater.

Provides structured warning items with stable codes so the CLI summary,
JSON output and log file all describe the same condition the same way.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known non-fatal conditions."""
    # Version resolution
    W_VERSION_DEGRADED = "W_VERSION_DEGRADED"
    W_LOCAL_VERSION_MISSING = "W_LOCAL_VERSION_MISSING"

    # Package
    W_IMAGE_AMBIGUOUS = "W_IMAGE_AMBIGUOUS"

    # Handshake
    W_NO_ACK = "W_NO_ACK"
    W_SERIAL_READ_ERROR = "W_SERIAL_READ_ERROR"

    # Operation
    W_DRY_RUN = "W_DRY_RUN"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_VERSION_DEGRADED:
        "Check that the key file matches the one used to encrypt mcu_vs.txt.",
    WarningCode.W_LOCAL_VERSION_MISSING:
        "First run on this host. The version file is created after a successful flash.",
    WarningCode.W_IMAGE_AMBIGUOUS:
        "The package should carry exactly one .uf2 image. Rebuild the archive.",
    WarningCode.W_NO_ACK:
        "Device firmware did not acknowledge. Check UART wiring and that the firmware listens for UPDATE_AVAILABLE.",
    WarningCode.W_SERIAL_READ_ERROR:
        "Intermittent serial errors. Check for other processes holding the port.",
    WarningCode.W_DRY_RUN:
        "Dry run complete. Run without --dry-run to handshake and flash.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details.",
}


@dataclass(frozen=True)
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            object.__setattr__(self, "remediation", WARNING_REMEDIATIONS[self.code])

    @classmethod
    def info(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.INFO, code, title, detail)

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.WARN, code, title, detail)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.ERROR, code, title, detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }

    def to_cli_string(self, verbose: bool = False) -> str:
        """Format for CLI output."""
        icons = {
            MessageLevel.INFO: "ℹ️ ",
            MessageLevel.WARN: "⚠️ ",
            MessageLevel.ERROR: "❌",
        }
        icon = icons.get(self.level, "")

        if not verbose:
            return f"{icon} {self.title}"
        lines = [f"{icon} [{self.code.value}] {self.title}"]
        if self.detail:
            lines.append(f"   {self.detail}")
        if self.remediation:
            lines.append(f"   → {self.remediation}")
        return "\n".join(lines)


def errors_to_items(errors: List[str]) -> List[WarningItem]:
    """Wrap plain error strings from a report as ERROR-level items."""
    return [WarningItem.error(WarningCode.W_UNKNOWN, err) for err in errors]


COMMON_WARNINGS = {
    "dry_run": WarningItem.info(
        WarningCode.W_DRY_RUN,
        "Dry run - no handshake, flash or commit performed",
    ),
    "no_ack": WarningItem.warn(
        WarningCode.W_NO_ACK,
        "No acknowledgment from device before announce deadline",
        "Proceeding with the default wait; the device was not asked for consent.",
    ),
}
