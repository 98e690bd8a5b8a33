"""
Firmware package retrieval.

Decrypts the distribution archive, unpacks it into a fixed staging
directory and picks the firmware image out of it.
"""

from __future__ import annotations

import io
import logging
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .core.errors import DecryptError, ImageNotFound, PackageDecryptFailed
from .core.messages import WarningCode, WarningItem
from .source import SecureFetcher

logger = logging.getLogger(__name__)

IMAGE_EXTENSION = ".uf2"


@dataclass
class RetrievedPackage:
    """Firmware image selected from a freshly unpacked package."""
    image_path: Path
    candidates: List[Path]
    warnings: List[WarningItem] = field(default_factory=list)


def _safe_extract(archive: tarfile.TarFile, dest: Path) -> None:
    """Extract all members, refusing anything that would land outside dest."""
    if hasattr(tarfile, "data_filter"):
        try:
            archive.extractall(dest, filter="data")
        except tarfile.FilterError as e:
            raise PackageDecryptFailed(f"Unsafe archive member: {e}")
        return

    root = dest.resolve()
    for member in archive.getmembers():
        target = (dest / member.name).resolve()
        if target != root and root not in target.parents:
            raise PackageDecryptFailed(f"Unsafe archive member: {member.name}")
        if member.issym() or member.islnk():
            raise PackageDecryptFailed(f"Links not allowed in package: {member.name}")
    archive.extractall(dest)


def find_images(directory: Path, extension: str = IMAGE_EXTENSION) -> List[Path]:
    """Top-level files in directory with the given extension, sorted by name."""
    if not directory.is_dir():
        return []
    return sorted(
        (p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == extension),
        key=lambda p: p.name,
    )


class PackageRetriever:
    """
    Decrypt, unpack and locate the firmware image.

    Args:
        fetcher: Source of the decrypted package bytes
        staging_dir: Extraction root; cleared on every run
        image_subdir: Directory (relative to staging_dir) holding the image
        extension: Recognized firmware image extension
    """

    def __init__(
        self,
        fetcher: SecureFetcher,
        staging_dir: str | Path,
        image_subdir: str = "OrionStack",
        extension: str = IMAGE_EXTENSION,
    ):
        self.fetcher = fetcher
        self.staging_dir = Path(staging_dir)
        self.image_subdir = image_subdir
        self.extension = extension.lower()

    @property
    def image_dir(self) -> Path:
        return self.staging_dir / self.image_subdir

    def _reset_staging(self) -> None:
        # Only the image directory is owned by us; the staging root may be a
        # shared work directory holding the key and version files.
        try:
            if self.image_dir.exists():
                shutil.rmtree(self.image_dir)
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PackageDecryptFailed(f"Cannot prepare staging directory {self.staging_dir}: {e}")

    def unpack(self, plaintext: bytes) -> None:
        """Replace staged content with the contents of a gzip tarball."""
        self._reset_staging()
        try:
            with tarfile.open(fileobj=io.BytesIO(plaintext), mode="r:gz") as archive:
                _safe_extract(archive, self.staging_dir)
        except (tarfile.TarError, EOFError, OSError) as e:
            raise PackageDecryptFailed(f"Decrypted package is not a readable tar.gz: {e}")

    def retrieve(self) -> RetrievedPackage:
        """
        Produce the firmware image path for this run.

        Raises:
            ArtifactMissing: If the package archive is absent.
            PackageDecryptFailed: If decryption or unpacking fails.
            ImageNotFound: If no image is present after unpacking.
        """
        try:
            plaintext = self.fetcher.package_plaintext()
        except DecryptError as e:
            raise PackageDecryptFailed(f"Package failed to decrypt: {e}")

        self.unpack(plaintext)
        logger.info(f"Package unpacked into {self.staging_dir}")

        candidates = find_images(self.image_dir, self.extension)
        if not candidates:
            raise ImageNotFound(f"No {self.extension} image found in {self.image_dir}")

        warnings: List[WarningItem] = []
        chosen = candidates[0]
        if len(candidates) > 1:
            names = ", ".join(p.name for p in candidates)
            logger.warning(f"Multiple images found ({names}); using {chosen.name}")
            warnings.append(WarningItem.warn(
                WarningCode.W_IMAGE_AMBIGUOUS,
                f"{len(candidates)} images in package, using {chosen.name}",
                names,
            ))

        logger.info(f"Found new image: {chosen}")
        return RetrievedPackage(image_path=chosen, candidates=candidates, warnings=warnings)
