"""
Persisted firmware version state.

The store holds a single plaintext integer: the last version that was
flashed and verified on the device. Only the orchestrator commits to it,
and only after the programmer reports success.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from .core.errors import VersionStateCorrupt

logger = logging.getLogger(__name__)


class VersionStore(Protocol):
    """Read/commit capability for the persisted version."""

    def read(self) -> Optional[int]:
        """Return the persisted version, or None if nothing was committed yet."""
        ...

    def commit(self, version: int) -> None:
        """Durably record version as the device's current firmware."""
        ...


class FileVersionStore:
    """
    VersionStore backed by a text file.

    Writes go through a temporary file in the same directory followed by
    os.replace, so a reader never sees a half-written value.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def read(self) -> Optional[int]:
        """
        Read the persisted version.

        Returns:
            The stored integer, or None if the file does not exist or is
            empty.

        Raises:
            VersionStateCorrupt: If the file exists but is not an integer.
        """
        try:
            text = self.path.read_text(encoding="ascii", errors="replace").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise VersionStateCorrupt(f"Cannot read version file {self.path}: {e}")

        if not text:
            logger.warning(f"Version file {self.path} is empty; treating as no persisted version")
            return None
        if not text.isdigit():
            raise VersionStateCorrupt(
                f"Version file {self.path} holds {text!r}, expected a non-negative integer"
            )
        return int(text)

    def commit(self, version: int) -> None:
        if version < 0:
            raise ValueError(f"Version must be non-negative, got {version}")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(f"{version}\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Committed version {version} to {self.path}")


class MemoryVersionStore:
    """In-memory VersionStore for tests and dry runs."""

    def __init__(self, version: Optional[int] = None):
        self.version = version
        self.commits = []

    def read(self) -> Optional[int]:
        return self.version

    def commit(self, version: int) -> None:
        self.version = version
        self.commits.append(version)
