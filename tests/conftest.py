"""Shared fakes and fixture builders for updater tests."""

import io
import struct
import tarfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from mcu_auto_updater.core.errors import FlashFailed, SerialLinkError, SerialUnavailable
from mcu_auto_updater.utils.crypto import openssl_encrypt

PASSWORD = b"correct horse battery staple"


def make_uf2(chunks: List[tuple], flags: int = 0) -> bytes:
    """Build a UF2 file from (address, payload) pairs, one block each."""
    out = bytearray()
    total = len(chunks)
    for block_no, (addr, payload) in enumerate(chunks):
        assert len(payload) <= 476
        header = struct.pack(
            "<8I", 0x0A324655, 0x9E5D5157, flags, addr, len(payload), block_no, total, 0xE48BFF56
        )
        data = payload + b"\x00" * (476 - len(payload))
        out += header + data + struct.pack("<I", 0x0AB16F30)
    return bytes(out)


def make_tar_gz(files: Dict[str, bytes]) -> bytes:
    """Build an in-memory gzip tarball from {member_name: content}."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as archive:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return buf.getvalue()


class FakeClock:
    """Monotonic clock that only moves when sleep() or a read advances it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLink:
    """
    Scripted serial link.

    Each read_reply pops the next scripted reply; an exhausted script means
    silence. Silent reads and errors advance the clock by the read timeout.
    """

    def __init__(self, replies: Optional[list] = None, clock: Optional[FakeClock] = None, open_error: bool = False):
        self.replies = list(replies or [])
        self.clock = clock
        self.open_error = open_error
        self.sent: List[bytes] = []
        self.opened = 0
        self.closed = 0

    def open(self) -> None:
        if self.open_error:
            raise SerialUnavailable("Cannot open port /dev/fake: no such device")
        self.opened += 1

    def close(self) -> None:
        self.closed += 1

    def send(self, data: bytes) -> None:
        self.sent.append(data)

    def read_reply(self, timeout: Optional[float] = None) -> bytes:
        reply = self.replies.pop(0) if self.replies else b""
        if isinstance(reply, Exception):
            if self.clock is not None:
                self.clock.now += timeout or 0
            raise reply
        if not reply and self.clock is not None:
            self.clock.now += timeout or 0
        return reply


class FakeProgrammer:
    """Programmer that records jobs instead of running OpenOCD."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.jobs = []

    def build_command(self, job) -> List[str]:
        return ["openocd", "-c", f"program {job.binary.path}"]

    def program(self, job) -> None:
        self.jobs.append(job)
        job.command = self.build_command(job)
        if self.fail:
            raise FlashFailed("OpenOCD exited with 1: Error: init mode failed")
        job.ok = True


def link_error() -> SerialLinkError:
    return SerialLinkError("Read error: device reports readiness to read but returned no data")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def distribution(tmp_path):
    """
    Factory that lays out a work directory like the deployed host.

    Returns a callable(remote_plain, files=None, local=None, key=PASSWORD)
    producing the work directory path.
    """
    workdir = tmp_path / "work"
    repo = workdir / "Orion-Software-Pack"

    def build(
        remote_plain: bytes,
        files: Optional[Dict[str, bytes]] = None,
        local: Optional[str] = None,
        version_key: bytes = PASSWORD,
        package: Optional[bytes] = None,
    ) -> Path:
        repo.mkdir(parents=True, exist_ok=True)
        (workdir / "key_hsio.bin").write_bytes(PASSWORD + b"\n")
        (repo / "mcu_vs.txt").write_bytes(openssl_encrypt(remote_plain, version_key))
        if package is None and files is not None:
            package = openssl_encrypt(make_tar_gz(files), PASSWORD)
        if package is not None:
            (repo / "OrionStack.tar.gz.enc").write_bytes(package)
        if local is not None:
            (workdir / "mcu_firmware_version_code.txt").write_text(local)
        return workdir

    return build
