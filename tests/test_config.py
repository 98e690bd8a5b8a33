"""Tests for UpdaterConfig."""

from pathlib import Path

import pytest

from mcu_auto_updater.config import UpdaterConfig


class TestFromWorkdir:
    """Workdir-relative path derivation."""

    def test_paths_follow_workdir(self, tmp_path):
        config = UpdaterConfig.from_workdir(tmp_path)
        assert config.repo_dir == tmp_path / "Orion-Software-Pack"
        assert config.key_file == tmp_path / "key_hsio.bin"
        assert config.version_file == tmp_path / "mcu_firmware_version_code.txt"
        assert config.staging_dir == tmp_path

    def test_defaults_match_deployed_host(self, tmp_path):
        config = UpdaterConfig.from_workdir(tmp_path)
        assert config.serial_port == "/dev/serial0"
        assert config.baudrate == 115200
        assert config.announce_timeout == 300
        assert config.default_wait == 300
        assert config.version_artifact == "mcu_vs.txt"
        assert config.package_artifact == "OrionStack.tar.gz.enc"

    def test_none_overrides_are_ignored(self, tmp_path):
        config = UpdaterConfig.from_workdir(tmp_path, serial_port=None, baudrate=9600)
        assert config.serial_port == "/dev/serial0"
        assert config.baudrate == 9600

    def test_path_overrides_are_coerced(self, tmp_path):
        config = UpdaterConfig.from_workdir(tmp_path, key_file=str(tmp_path / "other.key"))
        assert config.key_file == Path(tmp_path / "other.key")

    def test_unknown_override_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            UpdaterConfig.from_workdir(tmp_path, flux_capacitor=True)


class TestValidate:
    """Settings no run could succeed with."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"baudrate": 0},
            {"announce_timeout": 0},
            {"read_timeout": -1},
            {"default_wait": -5},
            {"image_extension": "uf2"},
        ],
    )
    def test_invalid(self, tmp_path, overrides):
        with pytest.raises(ValueError):
            UpdaterConfig.from_workdir(tmp_path, **overrides).validate()

    def test_zero_default_wait_allowed(self, tmp_path):
        UpdaterConfig.from_workdir(tmp_path, default_wait=0).validate()


def test_to_dict_is_json_friendly(tmp_path):
    data = UpdaterConfig.from_workdir(tmp_path).to_dict()
    assert data["workdir"] == str(tmp_path)
    assert data["use_sudo"] is True
