"""
Version resolution: decide whether the distribution is newer than the device.

The remote version is fail-safe. Anything that prevents reading it (bad key,
corrupt artifact, no digits in the plaintext) resolves to 0, which can never
be newer than a persisted version, so a broken artifact never forces a flash.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .core.errors import DecryptError, KeyUnavailable
from .core.messages import WarningCode, WarningItem
from .source import SecureFetcher
from .version_store import VersionStore

logger = logging.getLogger(__name__)

_DIGITS = re.compile(rb"[0-9]+")


@dataclass
class Resolution:
    """Outcome of comparing remote and local versions."""
    should_update: bool
    remote_version: int
    local_version: int
    warnings: List[WarningItem] = field(default_factory=list)


def extract_version(plaintext: bytes) -> Optional[int]:
    """
    Return the first contiguous run of ASCII digits as an integer.

    >>> extract_version(b"v5-stable")
    5
    >>> extract_version(b"stable") is None
    True
    """
    match = _DIGITS.search(plaintext)
    if match is None:
        return None
    return int(match.group(0))


class VersionResolver:
    """Compares the distribution's version against the persisted one."""

    def __init__(self, fetcher: SecureFetcher, store: VersionStore):
        self.fetcher = fetcher
        self.store = store

    def remote_version(self, warnings: Optional[List[WarningItem]] = None) -> int:
        """
        Decrypt the version artifact and extract its number.

        ArtifactMissing propagates. Decrypt failures, an unusable key file
        and digit-less plaintext degrade to 0 with a W_VERSION_DEGRADED
        warning.
        """
        try:
            plaintext = self.fetcher.version_plaintext()
        except (DecryptError, KeyUnavailable) as e:
            logger.warning(f"Version artifact failed to decrypt ({e}); treating remote version as 0")
            if warnings is not None:
                warnings.append(WarningItem.warn(
                    WarningCode.W_VERSION_DEGRADED,
                    "Remote version unreadable, update skipped",
                    str(e),
                ))
            return 0

        version = extract_version(plaintext)
        if version is None:
            logger.warning("Version artifact holds no digits; treating remote version as 0")
            if warnings is not None:
                warnings.append(WarningItem.warn(
                    WarningCode.W_VERSION_DEGRADED,
                    "Remote version has no digits, update skipped",
                ))
            return 0
        return version

    def resolve(self) -> Resolution:
        """
        Pull, read both versions and compare.

        Raises:
            SourceUnavailable: If the distribution cannot be pulled.
            ArtifactMissing: If the version artifact is absent.
            VersionStateCorrupt: If the persisted version is unreadable.
        """
        warnings: List[WarningItem] = []

        self.fetcher.refresh()
        remote = self.remote_version(warnings)
        logger.info(f"Remote firmware version: {remote}")

        local = self.store.read()
        if local is None:
            warnings.append(WarningItem.info(
                WarningCode.W_LOCAL_VERSION_MISSING,
                "No persisted version, assuming 0",
            ))
            local = 0
        logger.info(f"Local firmware version:  {local}")

        should_update = remote > local
        if should_update:
            logger.info(f"New version available: {remote} > {local}")
        else:
            logger.info("No update needed")

        return Resolution(
            should_update=should_update,
            remote_version=remote,
            local_version=local,
            warnings=warnings,
        )
