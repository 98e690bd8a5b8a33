"""
Distribution source and secure artifact fetching.

The distribution is a git checkout that carries two encrypted artifacts:
the version file and the firmware package archive. Pulling it is treated
as a single "get latest or fail" capability; everything past the pull is
local file access plus decryption.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol

from .core.errors import ArtifactMissing, SourceUnavailable
from .utils.crypto import Decryptor

logger = logging.getLogger(__name__)


class DistributionSource(Protocol):
    """Capability that refreshes a local checkout of the distribution."""

    root: Path

    def pull(self) -> None:
        """Bring the checkout up to date, or raise SourceUnavailable."""
        ...


class GitSource:
    """
    Fast-forward-only git pull of the distribution repository.

    Example:
        source = GitSource("~/Documents/Orion-Software-Pack")
        source.pull()
    """

    def __init__(
        self,
        root: str | Path,
        remote: str = "origin",
        branch: str = "main",
        git: str = "git",
        timeout: float = 120.0,
    ):
        self.root = Path(root).expanduser()
        self.remote = remote
        self.branch = branch
        self.git = git
        self.timeout = timeout

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = [self.git, "-C", str(self.root)] + args
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            return subprocess.run(
                cmd, check=False, capture_output=True, text=True, timeout=self.timeout
            )
        except FileNotFoundError:
            raise SourceUnavailable(f"'{self.git}' not found on PATH")
        except subprocess.TimeoutExpired:
            raise SourceUnavailable(f"git {args[0]} timed out after {self.timeout:.0f}s")

    def pull(self) -> None:
        if not self.root.is_dir():
            raise SourceUnavailable(f"Distribution repo not found: {self.root}")

        probe = self._run(["rev-parse", "--is-inside-work-tree"])
        if probe.returncode != 0 or probe.stdout.strip() != "true":
            raise SourceUnavailable(f"Not a git work tree: {self.root}")

        proc = self._run(["pull", "--ff-only", self.remote, self.branch])
        if proc.returncode != 0:
            err = (proc.stderr or proc.stdout or "").strip()
            raise SourceUnavailable(f"git pull failed: {err}")
        logger.info(f"Distribution repo updated ({self.remote}/{self.branch})")


class LocalSource:
    """Distribution already present on disk; pull is a no-op."""

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser()

    def pull(self) -> None:
        if not self.root.is_dir():
            raise SourceUnavailable(f"Distribution directory not found: {self.root}")
        logger.debug(f"Using local distribution at {self.root} (no pull)")


class SecureFetcher:
    """
    Pulls the distribution and hands out decrypted artifacts.

    Args:
        source: Distribution capability to refresh
        decryptor: Decryption capability bound to the local key
        version_artifact: Version artifact path, relative to the source root
        package_artifact: Package archive path, relative to the source root
    """

    def __init__(
        self,
        source: DistributionSource,
        decryptor: Decryptor,
        version_artifact: str = "mcu_vs.txt",
        package_artifact: str = "OrionStack.tar.gz.enc",
    ):
        self.source = source
        self.decryptor = decryptor
        self.version_artifact = version_artifact
        self.package_artifact = package_artifact

    def refresh(self) -> None:
        self.source.pull()

    def artifact_path(self, name: str) -> Path:
        return self.source.root / name

    def read_artifact(self, name: str) -> bytes:
        """
        Read an encrypted artifact.

        Raises:
            ArtifactMissing: If the file is absent from the checkout or
                cannot be read.
        """
        path = self.artifact_path(name)
        if not path.is_file():
            raise ArtifactMissing(f"{name} missing in {self.source.root}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise ArtifactMissing(f"Cannot read {path}: {e}")

    def decrypt_artifact(self, name: str) -> bytes:
        """Read and decrypt an artifact; DecryptError propagates to the caller."""
        return self.decryptor.decrypt(self.read_artifact(name))

    def version_plaintext(self) -> bytes:
        return self.decrypt_artifact(self.version_artifact)

    def package_plaintext(self) -> bytes:
        return self.decrypt_artifact(self.package_artifact)


def describe_source(source: DistributionSource) -> Optional[str]:
    """Short label for status output."""
    if isinstance(source, GitSource):
        return f"git {source.remote}/{source.branch} @ {source.root}"
    if isinstance(source, LocalSource):
        return f"local @ {source.root}"
    return None
