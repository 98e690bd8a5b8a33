"""
Core module for the MCU auto-updater.

This module provides the single source of truth for:
- Error taxonomy and exit codes (errors.py)
- Run reports (results.py)
- Standardized warnings/messages (messages.py)

Both the orchestrator and the CLI import from here rather than defining
their own result or warning types.
"""

from .errors import (
    UpdaterError,
    SourceUnavailable,
    ArtifactMissing,
    PackageDecryptFailed,
    ImageNotFound,
    SerialUnavailable,
    ConversionFailed,
    FlashFailed,
    VersionStateCorrupt,
    RunLocked,
    HandshakeCancelled,
    KeyUnavailable,
    DecryptError,
    SerialLinkError,
)
from .results import Outcome, UpdateReport
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    errors_to_items,
    COMMON_WARNINGS,
)

__all__ = [
    # Errors
    "UpdaterError",
    "SourceUnavailable",
    "ArtifactMissing",
    "PackageDecryptFailed",
    "ImageNotFound",
    "SerialUnavailable",
    "ConversionFailed",
    "FlashFailed",
    "VersionStateCorrupt",
    "RunLocked",
    "HandshakeCancelled",
    "KeyUnavailable",
    "DecryptError",
    "SerialLinkError",
    # Results
    "Outcome",
    "UpdateReport",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "errors_to_items",
    "COMMON_WARNINGS",
]
