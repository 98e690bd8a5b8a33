"""
Update orchestration.

Sequences one run of the pipeline:

    resolve → [newer?] → retrieve → handshake → flash → commit

The persisted version is committed only after the programmer reports a
verified flash. Any fatal error aborts the run, leaves the persisted
version untouched and maps to a non-zero exit code, so the next scheduled
run starts again from scratch.
"""

from __future__ import annotations

import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from .config import UpdaterConfig
from .core.errors import RunLocked, UpdaterError
from .core.messages import COMMON_WARNINGS, WarningCode, WarningItem
from .core.results import Outcome, UpdateReport
from .flash import FlashController, OpenOCDProgrammer, get_converter
from .package import PackageRetriever
from .protocol import HandshakeProtocol, SerialLink
from .resolver import VersionResolver
from .source import GitSource, LocalSource, SecureFetcher
from .targets import get_chip, get_interface
from .utils.crypto import OpenSSLDecryptor
from .version_store import FileVersionStore, VersionStore

logger = logging.getLogger(__name__)


class RunLock:
    """
    Exclusive, non-blocking lock guarding against overlapping runs.

    The kernel drops a flock when the holder exits, so a crashed run never
    leaves a stale lock behind.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise RunLocked(f"Cannot open lock file {self.path}: {e}")
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise RunLocked(f"Another update run holds {self.path}")
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class UpdateOrchestrator:
    """
    Owns stage ordering, failure policy and the commit.

    Args:
        resolver: Version comparison stage
        retriever: Package decrypt/unpack stage
        handshake: Device announce/ack/wait stage
        flasher: Convert + program stage
        store: Persisted version, committed on success only
        lock: Optional run lock held for the whole run
        dry_run: Stop after conversion; no handshake, flash or commit
    """

    def __init__(
        self,
        resolver: VersionResolver,
        retriever: PackageRetriever,
        handshake: HandshakeProtocol,
        flasher: FlashController,
        store: VersionStore,
        lock: Optional[RunLock] = None,
        dry_run: bool = False,
    ):
        self.resolver = resolver
        self.retriever = retriever
        self.handshake = handshake
        self.flasher = flasher
        self.store = store
        self.lock = lock
        self.dry_run = dry_run

    @classmethod
    def from_config(
        cls,
        config: UpdaterConfig,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> "UpdateOrchestrator":
        """Wire production capabilities from config."""
        config.validate()
        store = FileVersionStore(config.version_file)
        source = (
            GitSource(config.repo_dir, remote=config.git_remote, branch=config.git_branch)
            if config.pull
            else LocalSource(config.repo_dir)
        )
        fetcher = SecureFetcher(
            source,
            OpenSSLDecryptor(config.key_file, config.digest),
            version_artifact=config.version_artifact,
            package_artifact=config.package_artifact,
        )
        link = SerialLink(config.serial_port, config.baudrate, config.read_timeout)
        handshake = HandshakeProtocol(
            link,
            announce_timeout=config.announce_timeout,
            read_timeout=config.read_timeout,
            retry_interval=config.retry_interval,
            default_wait=config.default_wait,
            cancel_event=cancel_event,
        )
        programmer = OpenOCDProgrammer(
            openocd=config.openocd,
            use_sudo=config.use_sudo,
            config_path=config.openocd_config,
            timeout=config.flash_timeout,
        )
        flasher = FlashController(
            get_converter(config.converter),
            programmer,
            get_interface(config.interface),
            get_chip(config.chip),
            binary_path=config.binary_path,
        )
        return cls(
            resolver=VersionResolver(fetcher, store),
            retriever=PackageRetriever(
                fetcher,
                config.staging_dir,
                image_subdir=config.image_subdir,
                extension=config.image_extension,
            ),
            handshake=handshake,
            flasher=flasher,
            store=store,
            lock=RunLock(config.lock_file),
            dry_run=dry_run,
        )

    def run(self) -> UpdateReport:
        """
        Execute one pipeline run and report its outcome.

        Fatal UpdaterErrors are folded into the report; anything else
        propagates after logging, with the persisted version untouched.
        """
        report = UpdateReport(ok=True, outcome=Outcome.NO_UPDATE)
        logger.info("Starting MCU auto-update check...")
        try:
            if self.lock is not None:
                with self.lock:
                    self._run_stages(report)
            else:
                self._run_stages(report)
        except UpdaterError as e:
            logger.error(f"✗ {e.code}: {e}, aborting")
            report.fail(str(e), e.exit_code)
        return report

    def _run_stages(self, report: UpdateReport) -> None:
        report.stage = "resolve"
        resolution = self.resolver.resolve()
        report.remote_version = resolution.remote_version
        report.local_version = resolution.local_version
        report.warnings.extend(resolution.warnings)
        if not resolution.should_update:
            logger.info("No update needed. Exiting.")
            return

        report.stage = "retrieve"
        package = self.retriever.retrieve()
        report.image_path = str(package.image_path)
        report.warnings.extend(package.warnings)

        if self.dry_run:
            report.stage = "flash"
            job = self.flasher.prepare(package.image_path)
            report.metadata["command"] = job.command
            report.metadata["binary_size"] = job.binary.size
            report.outcome = Outcome.DRY_RUN
            report.add_warning(COMMON_WARNINGS["dry_run"])
            logger.info("Dry run: skipping handshake, flash and commit")
            return

        report.stage = "handshake"
        session = self.handshake.negotiate(resolution.remote_version)
        report.wait_seconds = session.wait_seconds
        report.acked = session.acked
        if not session.acked:
            report.add_warning(COMMON_WARNINGS["no_ack"])
        if session.read_errors:
            report.add_warning(WarningItem.warn(
                WarningCode.W_SERIAL_READ_ERROR,
                f"{session.read_errors} serial errors during announce",
            ))
        self.handshake.wait(session)

        report.stage = "flash"
        job = self.flasher.flash(package.image_path)
        report.metadata["command"] = job.command
        report.metadata["binary_size"] = job.binary.size

        report.stage = "commit"
        self.store.commit(resolution.remote_version)
        report.outcome = Outcome.UPDATED
        logger.info(f"Update complete: now at version {resolution.remote_version}")
