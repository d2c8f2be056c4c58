"""
Pytest configuration and shared fixtures for live-usb-installer tests.

No test touches a real block device: every external command goes through
storage.commands.run_command, whose subprocess.run is replaced by a
FakeCommands recorder, and /proc/mounts, /proc/swaps and /proc/meminfo are
redirected to temporary files.
"""

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List

import pytest

from live_usb_installer.config import settings
from live_usb_installer.domain.models import ProvisioningConfig, StorageDevice
from live_usb_installer.storage import mounts, swap


MEGA = 1024 * 1024

SWAPS_HEADER = "Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority\n"


# ==============================================================================
# Command Fixtures
# ==============================================================================


class FakeCommands:
    """Records commands and answers them like the real tools would.

    mount and umount update the fake /proc/mounts so mount state checks
    behave as on a real system.
    """

    def __init__(self, mounts_file: Path):
        self.mounts_file = mounts_file
        self.calls: List[List[str]] = []
        self._failures: List[Dict[str, Any]] = []
        self._outputs: Dict[str, str] = {}
        self._missing: List[str] = []

    def fail(self, *prefix: str, times: int = 1, returncode: int = 1, stderr: str = "error"):
        """Make the next `times` commands starting with prefix fail."""
        self._failures.append(
            {"prefix": list(prefix), "times": times, "returncode": returncode, "stderr": stderr}
        )

    def set_output(self, program: str, stdout: str) -> None:
        self._outputs[program] = stdout

    def missing(self, program: str) -> None:
        """Make program behave as if it were not installed."""
        self._missing.append(program)

    def named(self, program: str) -> List[List[str]]:
        return [call for call in self.calls if call[0] == program]

    def programs(self) -> List[str]:
        return [call[0] for call in self.calls]

    def __call__(self, command, **kwargs):
        command = list(command)
        self.calls.append(command)
        if command[0] in self._missing:
            raise FileNotFoundError(2, "No such file or directory", command[0])
        for failure in self._failures:
            prefix = failure["prefix"]
            if failure["times"] > 0 and command[: len(prefix)] == prefix:
                failure["times"] -= 1
                return subprocess.CompletedProcess(
                    command, failure["returncode"], "", failure["stderr"]
                )
        if command[0] == "mount":
            with open(self.mounts_file, "a", encoding="utf-8") as table:
                table.write(f"{command[1]} {command[2]} auto rw 0 0\n")
        elif command[0] == "umount":
            target = command[1]
            lines = self.mounts_file.read_text(encoding="utf-8").splitlines(True)
            kept = [line for line in lines if target not in line.split()[:2]]
            self.mounts_file.write_text("".join(kept), encoding="utf-8")
        return subprocess.CompletedProcess(command, 0, self._outputs.get(command[0], ""), "")


@pytest.fixture
def proc_files(tmp_path, monkeypatch) -> Dict[str, Path]:
    """Fake /proc/mounts, /proc/swaps and /proc/meminfo."""
    proc = tmp_path / "proc"
    proc.mkdir()
    files = {
        "mounts": proc / "mounts",
        "swaps": proc / "swaps",
        "meminfo": proc / "meminfo",
    }
    files["mounts"].write_text("", encoding="utf-8")
    files["swaps"].write_text(SWAPS_HEADER, encoding="utf-8")
    files["meminfo"].write_text(
        "MemTotal:        4000000 kB\nMemFree:         2000000 kB\nSwapFree:        1000000 kB\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(mounts, "MOUNTS_PATH", files["mounts"])
    monkeypatch.setattr(swap, "SWAPS_PATH", files["swaps"])
    monkeypatch.setattr(swap, "MEMINFO_PATH", files["meminfo"])
    return files


@pytest.fixture
def fake_commands(mocker, proc_files) -> FakeCommands:
    """Replace subprocess.run behind run_command with a recorder."""
    recorder = FakeCommands(proc_files["mounts"])
    mocker.patch(
        "live_usb_installer.storage.commands.subprocess.run", side_effect=recorder
    )
    mocker.patch("live_usb_installer.storage.commands.shutil.which", return_value=None)
    mocker.patch("live_usb_installer.storage.partitioner.shutil.which", return_value=None)
    return recorder


@pytest.fixture
def nodes_ready(mocker):
    """Partition nodes exist immediately; no settling sleeps."""
    mocker.patch("live_usb_installer.storage.settle.os.path.exists", return_value=True)
    return mocker.patch("live_usb_installer.storage.commands.sleep")


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Default settings with a temporary settings file and mount root."""
    monkeypatch.setattr(settings, "SETTINGS_PATH", tmp_path / "settings.json")
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    settings.settings_store.values["mount_root"] = str(tmp_path / "media")
    yield settings.settings_store
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    settings_dir = tmp_path / ".config" / "live-usb-installer"
    settings_dir.mkdir(parents=True, exist_ok=True)
    return settings_dir / "settings.json"


# ==============================================================================
# Device Fixtures
# ==============================================================================


@pytest.fixture
def mock_usb_device() -> Dict[str, Any]:
    """
    Fixture providing an 8 GiB USB stick as returned by lsblk -J -b.

    The stick carries an old exchange partition and a boot partition.
    """
    return {
        "name": "sdb",
        "size": str(8192 * MEGA),
        "type": "disk",
        "rm": "1",
        "tran": "usb",
        "vendor": "Kingston",
        "model": "DataTraveler 3.0",
        "children": [
            {
                "name": "sdb1",
                "size": str(100 * MEGA),
                "type": "part",
                "label": "boot",
                "fstype": "vfat",
            },
            {
                "name": "sdb2",
                "size": str(1024 * MEGA),
                "type": "part",
                "label": "Exchange",
                "fstype": "exfat",
            },
            {
                "name": "sdb3",
                "size": str(6000 * MEGA),
                "type": "part",
                "label": "system",
                "fstype": "ext4",
            },
        ],
    }


@pytest.fixture
def mock_sd_card() -> Dict[str, Any]:
    """Fixture providing a blank 4 GiB SD card."""
    return {
        "name": "mmcblk0",
        "size": str(4096 * MEGA),
        "type": "disk",
        "rm": "0",
        "tran": None,
        "vendor": None,
        "model": None,
    }


@pytest.fixture
def mock_lsblk_output(mock_usb_device) -> str:
    return json.dumps({"blockdevices": [mock_usb_device]})


@pytest.fixture
def usb_device(mock_usb_device) -> StorageDevice:
    return StorageDevice.from_lsblk_dict(mock_usb_device)


@pytest.fixture
def config() -> ProvisioningConfig:
    """A 1,200 MiB system partition (enlarged size set explicitly)."""
    return ProvisioningConfig(
        system_size=1000 * MEGA,
        system_size_enlarged=1200 * MEGA,
        system_partition_label="lernstick",
    )


@pytest.fixture
def live_tree(tmp_path) -> Path:
    """
    Fixture providing a directory installation source.

    Layout:
        boot/isolinux/{isolinux.cfg,stdmenu.cfg,exithelp.cfg,boot.cat}
        boot/efi/boot/bootx64.efi
        boot/md5sum.txt
        system/live/filesystem.squashfs
        exchange/readme.txt
    """
    root = tmp_path / "live"
    isolinux = root / "boot" / "isolinux"
    isolinux.mkdir(parents=True)
    (isolinux / "isolinux.cfg").write_text(
        "include stdmenu.cfg\nlabel live\n  kernel /live/vmlinuz\n"
        "  append boot=live config persistence quiet\n"
        "  # see isolinux docs\n"
    )
    (isolinux / "stdmenu.cfg").write_text("menu background /isolinux/splash.png\n")
    (isolinux / "exithelp.cfg").write_text("config isolinux.cfg\n")
    (isolinux / "boot.cat").write_bytes(b"\x01\x00")
    efi = root / "boot" / "efi" / "boot"
    efi.mkdir(parents=True)
    (efi / "bootx64.efi").write_bytes(b"MZ")
    (root / "boot" / "md5sum.txt").write_text(
        "aaaa  ./isolinux/isolinux.cfg\n"
        "bbbb  ./boot/grub/grub.cfg\n"
        "cccc  ./live/vmlinuz\n"
        "dddd  ./isolinux/xmlboot.config\n"
    )
    live = root / "system" / "live"
    live.mkdir(parents=True)
    (live / "filesystem.squashfs").write_bytes(b"\x00" * 4096)
    exchange = root / "exchange"
    exchange.mkdir()
    (exchange / "readme.txt").write_text("hello\n")
    return root
