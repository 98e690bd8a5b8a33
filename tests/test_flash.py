"""Tests for UF2 conversion, OpenOCD programming and the flash controller."""

import subprocess
from pathlib import Path

import pytest

from conftest import FakeProgrammer, make_uf2
from mcu_auto_updater.core.errors import ConversionFailed, FlashFailed
from mcu_auto_updater.flash import (
    CommandConverter,
    ConvertedImage,
    FlashController,
    FlashJob,
    NativeUF2Converter,
    OpenOCDProgrammer,
    get_converter,
    parse_uf2_blocks,
    uf2_to_bin,
)
from mcu_auto_updater.targets import get_chip, get_interface


class TestUF2Parsing:
    """Block-level parsing."""

    def test_parses_blocks(self):
        data = make_uf2([(0x10000000, b"\x01" * 256), (0x10000100, b"\x02" * 256)])
        blocks = parse_uf2_blocks(data)
        assert len(blocks) == 2
        assert blocks[1].target_addr == 0x10000100
        assert blocks[0].num_blocks == 2

    def test_rejects_partial_block(self):
        with pytest.raises(ConversionFailed):
            parse_uf2_blocks(b"\x00" * 100)

    def test_rejects_file_without_valid_blocks(self):
        with pytest.raises(ConversionFailed):
            parse_uf2_blocks(b"\x00" * 512)


class TestUF2ToBin:
    """Flattening to a contiguous binary."""

    def test_contiguous_blocks(self):
        data = make_uf2([(0x10000000, b"\xAA" * 256), (0x10000100, b"\xBB" * 256)])
        binary, base = uf2_to_bin(data)
        assert base == 0x10000000
        assert binary == b"\xAA" * 256 + b"\xBB" * 256

    def test_gap_is_zero_filled(self):
        data = make_uf2([(0x10000000, b"\xAA" * 4), (0x10000010, b"\xBB" * 4)])
        binary, _ = uf2_to_bin(data)
        assert binary == b"\xAA" * 4 + b"\x00" * 12 + b"\xBB" * 4

    def test_backwards_block_rejected(self):
        data = make_uf2([(0x10000100, b"\xAA" * 256), (0x10000000, b"\xBB" * 256)])
        with pytest.raises(ConversionFailed):
            uf2_to_bin(data)

    def test_not_main_flash_blocks_skipped(self):
        data = make_uf2([(0x10000000, b"\xAA" * 16)], flags=0x1)
        with pytest.raises(ConversionFailed):
            uf2_to_bin(data)


class TestConverters:
    """Converter capabilities."""

    def test_native_writes_binary(self, tmp_path):
        image = tmp_path / "fw.uf2"
        image.write_bytes(make_uf2([(0x10000000, b"\x11" * 256)]))
        out = tmp_path / "out" / "fw.bin"

        converted = NativeUF2Converter().convert(image, out)
        assert converted.base_address == 0x10000000
        assert converted.size == 256
        assert out.read_bytes() == b"\x11" * 256

    def test_native_missing_image(self, tmp_path):
        with pytest.raises(ConversionFailed):
            NativeUF2Converter().convert(tmp_path / "missing.uf2", tmp_path / "out.bin")

    def test_native_unwritable_output(self, tmp_path):
        image = tmp_path / "fw.uf2"
        image.write_bytes(make_uf2([(0x10000000, b"\x11" * 16)]))
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        with pytest.raises(ConversionFailed):
            NativeUF2Converter().convert(image, blocker / "fw.bin")

    def test_command_converter_failure(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run",
            lambda cmd, **kw: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Not a UF2 file"),
        )
        with pytest.raises(ConversionFailed) as ei:
            CommandConverter().convert(tmp_path / "fw.uf2", tmp_path / "fw.bin")
        assert "Not a UF2 file" in str(ei.value)

    def test_get_converter(self):
        assert isinstance(get_converter("native"), NativeUF2Converter)
        assert isinstance(get_converter("UF2CONV"), CommandConverter)
        with pytest.raises(ValueError):
            get_converter("objcopy")


def _job(tmp_path, base=0x10000000):
    return FlashJob(
        image_path=tmp_path / "fw.uf2",
        binary=ConvertedImage(path=tmp_path / "fw.bin", base_address=base, size=256),
        interface=get_interface("cm5-gpio"),
        chip=get_chip("rp2040"),
    )


class TestOpenOCDProgrammer:
    """Programmer command sequence and failure mapping."""

    def test_command_sequence(self, tmp_path):
        programmer = OpenOCDProgrammer(config_path=tmp_path / "swd.cfg")
        cmd = programmer.build_command(_job(tmp_path))
        assert cmd[:3] == ["openocd", "-f", str(tmp_path / "swd.cfg")]
        assert cmd[3] == "-c"
        assert cmd[4] == f"init; reset halt; program {tmp_path / 'fw.bin'} 0x10000000 verify reset; exit"

    def test_sudo_prefix(self, tmp_path):
        programmer = OpenOCDProgrammer(use_sudo=True, config_path=tmp_path / "swd.cfg")
        assert programmer.build_command(_job(tmp_path))[0] == "sudo"

    def test_success_writes_config(self, tmp_path, monkeypatch):
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="** Verified OK **")

        monkeypatch.setattr(subprocess, "run", fake_run)
        programmer = OpenOCDProgrammer(config_path=tmp_path / "swd.cfg")
        job = _job(tmp_path)
        programmer.program(job)

        assert job.ok is True
        assert "Verified OK" in job.output
        cfg = (tmp_path / "swd.cfg").read_text()
        assert "bcm2835gpio_swd_nums 18 15" in cfg
        assert "source [find target/rp2040.cfg]" in cfg

    def test_nonzero_exit_is_flash_failed(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run",
            lambda cmd, **kw: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Error: init mode failed"),
        )
        job = _job(tmp_path)
        with pytest.raises(FlashFailed) as ei:
            OpenOCDProgrammer(config_path=tmp_path / "swd.cfg").program(job)
        assert "init mode failed" in str(ei.value)
        assert job.ok is False

    def test_unwritable_config_is_flash_failed(self, tmp_path, monkeypatch):
        def fail_run(cmd, **kwargs):
            raise AssertionError("OpenOCD must not run without a config")

        monkeypatch.setattr(subprocess, "run", fail_run)
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        programmer = OpenOCDProgrammer(config_path=blocker / "swd.cfg")
        with pytest.raises(FlashFailed):
            programmer.program(_job(tmp_path))

    def test_timeout_is_flash_failed(self, tmp_path, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(FlashFailed):
            OpenOCDProgrammer(config_path=tmp_path / "swd.cfg", timeout=1).program(_job(tmp_path))

    def test_missing_openocd(self, tmp_path, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(FlashFailed):
            OpenOCDProgrammer(config_path=tmp_path / "swd.cfg").program(_job(tmp_path))


class TestFlashController:
    """Conversion + programming as one job."""

    def _controller(self, tmp_path, programmer):
        return FlashController(
            NativeUF2Converter(),
            programmer,
            get_interface("cm5-gpio"),
            get_chip("rp2040"),
            binary_path=tmp_path / "mcu_update.bin",
        )

    def test_flash_converts_then_programs(self, tmp_path):
        image = tmp_path / "fw.uf2"
        image.write_bytes(make_uf2([(0x10000000, b"\x22" * 64)]))
        programmer = FakeProgrammer()

        job = self._controller(tmp_path, programmer).flash(image)
        assert job.ok is True
        assert programmer.jobs == [job]
        assert Path(job.binary.path).read_bytes() == b"\x22" * 64

    def test_conversion_failure_skips_programmer(self, tmp_path):
        image = tmp_path / "fw.uf2"
        image.write_bytes(b"not a uf2")
        programmer = FakeProgrammer()
        with pytest.raises(ConversionFailed):
            self._controller(tmp_path, programmer).flash(image)
        assert programmer.jobs == []

    def test_programmer_failure_propagates(self, tmp_path):
        image = tmp_path / "fw.uf2"
        image.write_bytes(make_uf2([(0x10000000, b"\x22" * 64)]))
        with pytest.raises(FlashFailed):
            self._controller(tmp_path, FakeProgrammer(fail=True)).flash(image)
