"""
Updater configuration.

All paths and tunables live in one dataclass. Defaults reproduce the layout
deployed on the host: everything sits under a single work directory
(``~/Documents``) next to a checkout of the distribution repository.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict

DEFAULT_WORKDIR = Path("~/Documents")
REPO_DIRNAME = "Orion-Software-Pack"


@dataclass(frozen=True)
class UpdaterConfig:
    """Effective configuration for one updater run."""

    workdir: Path = DEFAULT_WORKDIR
    repo_dir: Path = DEFAULT_WORKDIR / REPO_DIRNAME
    key_file: Path = DEFAULT_WORKDIR / "key_hsio.bin"
    version_file: Path = DEFAULT_WORKDIR / "mcu_firmware_version_code.txt"
    staging_dir: Path = DEFAULT_WORKDIR
    lock_file: Path = DEFAULT_WORKDIR / ".mcu-updater.lock"

    # Distribution
    version_artifact: str = "mcu_vs.txt"
    package_artifact: str = "OrionStack.tar.gz.enc"
    image_subdir: str = "OrionStack"
    image_extension: str = ".uf2"
    git_remote: str = "origin"
    git_branch: str = "main"
    pull: bool = True
    digest: str = "sha256"

    # Serial handshake
    serial_port: str = "/dev/serial0"
    baudrate: int = 115200
    announce_timeout: float = 300.0
    read_timeout: float = 2.0
    retry_interval: float = 2.0
    default_wait: int = 300

    # Flashing
    interface: str = "cm5-gpio"
    chip: str = "rp2040"
    converter: str = "native"
    openocd: str = "openocd"
    use_sudo: bool = True
    flash_timeout: float = 600.0
    binary_path: Path = field(default_factory=lambda: Path("/tmp/mcu_update.bin"))
    openocd_config: Path = field(default_factory=lambda: Path("/tmp/rp2350_swd.cfg"))

    @classmethod
    def from_workdir(cls, workdir: str | os.PathLike, **overrides: Any) -> "UpdaterConfig":
        """
        Derive every workdir-relative path from workdir, then apply overrides.

        Overrides whose value is None are ignored so CLI options can be
        passed straight through.
        """
        root = Path(workdir).expanduser()
        base = cls(
            workdir=root,
            repo_dir=root / REPO_DIRNAME,
            key_file=root / "key_hsio.bin",
            version_file=root / "mcu_firmware_version_code.txt",
            staging_dir=root,
            lock_file=root / ".mcu-updater.lock",
        )
        return base.with_overrides(**overrides)

    def with_overrides(self, **overrides: Any) -> "UpdaterConfig":
        known = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(known) - set(self.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        for key, value in list(known.items()):
            if isinstance(getattr(self, key), Path):
                known[key] = Path(value).expanduser()
        return replace(self, **known)

    def validate(self) -> None:
        """
        Reject settings no run could succeed with.

        Raises:
            ValueError: Describing the first bad setting found.
        """
        if self.baudrate <= 0:
            raise ValueError(f"Invalid baudrate: {self.baudrate}")
        for name in ("announce_timeout", "read_timeout", "retry_interval", "flash_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.default_wait < 0:
            raise ValueError(f"default_wait must be >= 0, got {self.default_wait}")
        if not self.image_extension.startswith("."):
            raise ValueError(f"image_extension must start with '.', got {self.image_extension!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {k: str(v) if isinstance(v, Path) else v for k, v in asdict(self).items()}
