"""
Firmware conversion and SWD programming.

This module provides:
- UF2 → flat binary conversion (native parser, or an external uf2conv)
- OpenOCD-driven programming over SWD with a fixed command sequence
- FlashController, which ties conversion and programming into one job

UF2 block layout (512 bytes, little-endian):
| Offset | Size | Description |
|--------|------|-------------|
| 0x000 | 4 | Magic start 0 (0x0A324655, "UF2\\n") |
| 0x004 | 4 | Magic start 1 (0x9E5D5157) |
| 0x008 | 4 | Flags |
| 0x00C | 4 | Target address |
| 0x010 | 4 | Payload size (<= 476) |
| 0x014 | 4 | Block number |
| 0x018 | 4 | Total blocks |
| 0x01C | 4 | File size or family ID |
| 0x020 | 476 | Payload |
| 0x1FC | 4 | Magic end (0x0AB16F30) |
"""

from __future__ import annotations

import logging
import struct
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol

from .core.errors import ConversionFailed, FlashFailed
from .targets import ChipProfile, DebugInterface, render_openocd_config

logger = logging.getLogger(__name__)

UF2_BLOCK_SIZE = 512
UF2_MAGIC_START0 = 0x0A324655
UF2_MAGIC_START1 = 0x9E5D5157
UF2_MAGIC_END = 0x0AB16F30
UF2_FLAG_NOT_MAIN_FLASH = 0x00000001
UF2_FLAG_FAMILY_ID_PRESENT = 0x00002000
UF2_MAX_PAYLOAD = 476
UF2_MAX_GAP = 10 * 1024 * 1024

_UF2_HEADER = struct.Struct("<8I")


@dataclass(frozen=True)
class UF2Block:
    """Parsed header + payload of a single UF2 block."""

    flags: int
    target_addr: int
    payload: bytes
    block_no: int
    num_blocks: int
    family_id: Optional[int]


@dataclass
class ConvertedImage:
    """Flat binary produced from a firmware image."""

    path: Path
    base_address: Optional[int]
    size: int


@dataclass
class FlashJob:
    """Converted binary plus the target it will be programmed onto."""

    image_path: Path
    binary: ConvertedImage
    interface: DebugInterface
    chip: ChipProfile
    command: List[str] = field(default_factory=list)
    output: str = ""
    ok: bool = False


def parse_uf2_blocks(data: bytes) -> List[UF2Block]:
    """
    Parse every well-formed block of a UF2 file.

    Blocks with bad magic are skipped, matching uf2conv.

    Raises:
        ConversionFailed: If the length is not a multiple of 512, a payload
            is oversized, or no valid block exists.
    """
    if not data or len(data) % UF2_BLOCK_SIZE:
        raise ConversionFailed(
            f"UF2 size {len(data)} is not a non-zero multiple of {UF2_BLOCK_SIZE}"
        )

    blocks = []
    for offset in range(0, len(data), UF2_BLOCK_SIZE):
        raw = data[offset:offset + UF2_BLOCK_SIZE]
        (magic0, magic1, flags, addr, size, block_no, num_blocks, extra) = _UF2_HEADER.unpack_from(raw)
        (magic_end,) = struct.unpack_from("<I", raw, UF2_BLOCK_SIZE - 4)
        if magic0 != UF2_MAGIC_START0 or magic1 != UF2_MAGIC_START1 or magic_end != UF2_MAGIC_END:
            logger.debug(f"Skipping block at 0x{offset:X}: bad magic")
            continue
        if size > UF2_MAX_PAYLOAD:
            raise ConversionFailed(f"Block {block_no} payload {size} exceeds {UF2_MAX_PAYLOAD}")
        family = extra if flags & UF2_FLAG_FAMILY_ID_PRESENT else None
        blocks.append(UF2Block(flags, addr, raw[32:32 + size], block_no, num_blocks, family))

    if not blocks:
        raise ConversionFailed("No valid UF2 blocks found")
    return blocks


def uf2_to_bin(data: bytes, family_id: Optional[int] = None) -> tuple[bytes, int]:
    """
    Flatten UF2 blocks into a contiguous binary.

    Gaps between blocks are zero-filled. Blocks flagged "not main flash"
    and, when family_id is given, blocks of other families are dropped.

    Returns:
        (binary, base_address)

    Raises:
        ConversionFailed: On out-of-order blocks, oversized gaps or when
            nothing remains after filtering.
    """
    out = bytearray()
    base: Optional[int] = None
    current: Optional[int] = None

    for block in parse_uf2_blocks(data):
        if block.flags & UF2_FLAG_NOT_MAIN_FLASH:
            continue
        if family_id is not None and block.family_id not in (None, family_id):
            continue

        if current is None:
            base = current = block.target_addr
        gap = block.target_addr - current
        if gap < 0:
            raise ConversionFailed(
                f"Block {block.block_no} at 0x{block.target_addr:08X} goes backwards "
                f"(expected >= 0x{current:08X})"
            )
        if gap > UF2_MAX_GAP:
            raise ConversionFailed(f"Gap of {gap} bytes before block {block.block_no} is too large")
        out.extend(b"\x00" * gap)
        out.extend(block.payload)
        current = block.target_addr + len(block.payload)

    if base is None:
        raise ConversionFailed("No main-flash blocks left after filtering")
    return bytes(out), base


class ImageConverter(Protocol):
    """Converts a firmware image into the programmer's native format."""

    def convert(self, image_path: Path, output_path: Path) -> ConvertedImage: ...


class NativeUF2Converter:
    """In-process UF2 → BIN conversion."""

    def __init__(self, family_id: Optional[int] = None):
        self.family_id = family_id

    def convert(self, image_path: Path, output_path: Path) -> ConvertedImage:
        try:
            data = Path(image_path).read_bytes()
        except OSError as e:
            raise ConversionFailed(f"Cannot read image {image_path}: {e}")

        binary, base = uf2_to_bin(data, self.family_id)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_bytes(binary)
        except OSError as e:
            raise ConversionFailed(f"Cannot write binary {output_path}: {e}")
        logger.info(f"Converted {Path(image_path).name} -> {output_path} ({len(binary):,} bytes @ 0x{base:08X})")
        return ConvertedImage(path=output_path, base_address=base, size=len(binary))


class CommandConverter:
    """Conversion through an external ``uf2conv <in> -o <out>`` command."""

    def __init__(self, command: str = "uf2conv", timeout: float = 120.0):
        self.command = command
        self.timeout = timeout

    def convert(self, image_path: Path, output_path: Path) -> ConvertedImage:
        cmd = [self.command, str(image_path), "-o", str(output_path)]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            proc = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise ConversionFailed(f"'{self.command}' not found on PATH")
        except subprocess.TimeoutExpired:
            raise ConversionFailed(f"{self.command} timed out after {self.timeout:.0f}s")

        if proc.returncode != 0 or not output_path.is_file():
            err = (proc.stderr or proc.stdout or "").strip()
            raise ConversionFailed(f"{self.command} failed: {err}")

        size = output_path.stat().st_size
        logger.info(f"Converted {Path(image_path).name} -> {output_path} ({size:,} bytes)")
        return ConvertedImage(path=output_path, base_address=None, size=size)


def get_converter(name: str) -> ImageConverter:
    """Converter by name: "native" or "uf2conv"."""
    key = name.strip().lower()
    if key == "native":
        return NativeUF2Converter()
    if key == "uf2conv":
        return CommandConverter()
    raise ValueError(f"Unknown converter '{name}'. Use 'native' or 'uf2conv'.")


class OpenOCDProgrammer:
    """
    Programs a flat binary over SWD with OpenOCD.

    Sequence: init; reset halt; program <bin> [addr] verify reset; exit
    """

    def __init__(
        self,
        openocd: str = "openocd",
        use_sudo: bool = False,
        config_path: Optional[Path] = None,
        timeout: float = 600.0,
    ):
        self.openocd = openocd
        self.use_sudo = use_sudo
        self.config_path = Path(config_path) if config_path else Path(tempfile.gettempdir()) / "mcu_swd.cfg"
        self.timeout = timeout

    def build_command(self, job: FlashJob) -> List[str]:
        program = f"program {job.binary.path}"
        if job.binary.base_address is not None:
            program += f" 0x{job.binary.base_address:08X}"
        script = f"init; reset halt; {program} verify reset; exit"

        cmd = [self.openocd, "-f", str(self.config_path), "-c", script]
        if self.use_sudo:
            cmd = ["sudo"] + cmd
        return cmd

    def write_config(self, job: FlashJob) -> Path:
        """
        Write the OpenOCD configuration for job.

        Raises:
            FlashFailed: If the file cannot be written.
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(render_openocd_config(job.interface, job.chip), encoding="utf-8")
        except OSError as e:
            raise FlashFailed(f"Cannot write OpenOCD config {self.config_path}: {e}")
        return self.config_path

    def program(self, job: FlashJob) -> None:
        """
        Run OpenOCD for job.

        Raises:
            FlashFailed: On an unwritable config, missing tool, non-zero exit
                or timeout.
        """
        job.command = self.build_command(job)
        self.write_config(job)
        logger.debug(f"Running: {' '.join(job.command)}")

        try:
            proc = subprocess.run(
                job.command, check=False, capture_output=True, text=True, timeout=self.timeout
            )
        except FileNotFoundError:
            raise FlashFailed(f"'{job.command[0]}' not found on PATH")
        except subprocess.TimeoutExpired:
            raise FlashFailed(f"OpenOCD timed out after {self.timeout:.0f}s; device state unknown")

        # OpenOCD logs to stderr
        job.output = (proc.stderr or "") + (proc.stdout or "")
        if proc.returncode != 0:
            tail = "\n".join(job.output.strip().splitlines()[-5:])
            raise FlashFailed(f"OpenOCD exited with {proc.returncode}: {tail}")
        job.ok = True


class FlashController:
    """
    Convert the image, then program it. Never touches persisted state.

    Args:
        converter: Image conversion capability
        programmer: Programming capability (OpenOCDProgrammer or a fake)
        interface: Debug interface for the job
        chip: Chip profile for the job
        binary_path: Where the converted binary is written
    """

    def __init__(
        self,
        converter: ImageConverter,
        programmer: OpenOCDProgrammer,
        interface: DebugInterface,
        chip: ChipProfile,
        binary_path: Optional[Path] = None,
    ):
        self.converter = converter
        self.programmer = programmer
        self.interface = interface
        self.chip = chip
        self.binary_path = Path(binary_path) if binary_path else Path(tempfile.gettempdir()) / "mcu_update.bin"

    def prepare(self, image_path: Path) -> FlashJob:
        """
        Convert image_path and build (but do not run) the flash job.

        Raises:
            ConversionFailed: If the converter fails.
        """
        binary = self.converter.convert(Path(image_path), self.binary_path)
        job = FlashJob(image_path=Path(image_path), binary=binary, interface=self.interface, chip=self.chip)
        job.command = self.programmer.build_command(job)
        return job

    def flash(self, image_path: Path) -> FlashJob:
        """
        Convert and program image_path onto the target.

        Raises:
            ConversionFailed: If conversion fails.
            FlashFailed: If the programmer reports anything but success.
        """
        job = self.prepare(image_path)
        logger.info(f"Flashing MCU ({self.chip.name} via {self.interface.name})...")
        self.programmer.program(job)
        logger.info("Flash verified")
        return job
