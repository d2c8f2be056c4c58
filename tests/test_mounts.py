"""Tests for storage/mounts.py - mount table queries and mount bookkeeping.

This test suite covers:
- /proc/mounts parsing (octal escapes)
- Partition membership (sdb vs. sdba, mmcblk0p1)
- mount_partition() already-mounted bookkeeping
- umount_partition() and umount() including swap files on the mount
"""

import pytest

from live_usb_installer.domain.models import Partition
from live_usb_installer.storage import mounts
from live_usb_installer.storage.exceptions import (
    MountPathUnavailableError,
    UnmountFailedError,
)


class TestMountTable:
    def test_read_mount_table_decodes_escapes(self, proc_files):
        proc_files["mounts"].write_text(
            "/dev/sdb1 /media/user/My\\040Stick vfat rw 0 0\n"
        )

        assert mounts.read_mount_table() == [("/dev/sdb1", "/media/user/My Stick")]

    def test_mounted_partitions_matches_only_device(self, proc_files):
        proc_files["mounts"].write_text(
            "/dev/sdb1 /media/a vfat rw 0 0\n"
            "/dev/sdb12 /media/b vfat rw 0 0\n"
            "/dev/sdba1 /media/c vfat rw 0 0\n"
            "tmpfs /tmp tmpfs rw 0 0\n"
        )

        assert mounts.mounted_partitions("/dev/sdb") == [
            ("/dev/sdb1", "/media/a"),
            ("/dev/sdb12", "/media/b"),
        ]

    def test_mmc_partitions(self, proc_files):
        proc_files["mounts"].write_text("/dev/mmcblk0p1 /boot vfat rw 0 0\n")

        assert mounts.mounted_partitions("/dev/mmcblk0") == [("/dev/mmcblk0p1", "/boot")]

    def test_is_mounted(self, proc_files):
        proc_files["mounts"].write_text("/dev/sdb1 /media/a vfat rw 0 0\n")

        assert mounts.is_mounted("/dev/sdb1") is True
        assert mounts.is_mounted("/dev/sdb2") is False
        assert mounts.get_mount_path("/dev/sdb1") == "/media/a"


class TestMountPartition:
    def test_mounts_below_mount_root(self, fake_commands, tmp_path):
        partition = Partition("sdb", 2)

        info = mounts.mount_partition(partition)

        assert info.already_mounted is False
        assert info.mount_path == str(tmp_path / "media" / "sdb2")
        assert ["mount", "/dev/sdb2", info.mount_path] in fake_commands.calls
        assert mounts.is_mounted("/dev/sdb2")

    def test_already_mounted_is_reused(self, fake_commands, proc_files):
        proc_files["mounts"].write_text("/dev/sdb2 /media/user/boot vfat rw 0 0\n")

        info = mounts.mount_partition(Partition("sdb", 2))

        assert info.already_mounted is True
        assert info.mount_path == "/media/user/boot"
        assert fake_commands.named("mount") == []

    def test_mount_failure_returns_no_path(self, fake_commands):
        fake_commands.fail("mount", stderr="wrong fs type")

        info = mounts.mount_partition(Partition("sdb", 2))

        assert info.mount_path is None

    def test_missing_mount_returns_no_path(self, fake_commands, tmp_path):
        fake_commands.missing("mount")

        info = mounts.mount_partition(Partition("sdb", 2))

        assert info.mount_path is None
        assert not (tmp_path / "media" / "sdb2").exists()

    def test_require_mount_path(self, fake_commands):
        partition = Partition("sdb", 2)
        fake_commands.fail("mount")
        info = mounts.mount_partition(partition)

        with pytest.raises(MountPathUnavailableError) as exc_info:
            mounts.require_mount_path(info, partition, "boot")

        assert str(exc_info.value) == "could not mount boot partition /dev/sdb2"


class TestUmountPartition:
    def test_not_mounted_is_success(self, fake_commands):
        assert mounts.umount_partition(Partition("sdb", 1)) is True
        assert fake_commands.named("umount") == []

    def test_unmounts_and_removes_mount_point(self, fake_commands, tmp_path):
        partition = Partition("sdb", 1)
        info = mounts.mount_partition(partition)

        assert mounts.umount_partition(partition) is True

        assert fake_commands.named("umount") == [["umount", "/dev/sdb1"]]
        assert not (tmp_path / "media" / "sdb1").exists()
        assert info.mount_path is not None

    def test_failure_returns_false(self, fake_commands):
        partition = Partition("sdb", 1)
        mounts.mount_partition(partition)
        fake_commands.fail("umount", stderr="target is busy")

        assert mounts.umount_partition(partition) is False

    def test_mount_bookkeeping_round_trip(self, fake_commands, proc_files):
        """Test a pre-existing mount survives, a fresh one is removed."""
        proc_files["mounts"].write_text("/dev/sdb1 /media/user/Exchange vfat rw 0 0\n")
        exchange = Partition("sdb", 1)
        boot = Partition("sdb", 2)

        exchange_info = mounts.mount_partition(exchange)
        boot_info = mounts.mount_partition(boot)
        for partition, info in ((exchange, exchange_info), (boot, boot_info)):
            if not info.already_mounted:
                mounts.umount_partition(partition)

        assert mounts.is_mounted("/dev/sdb1")
        assert not mounts.is_mounted("/dev/sdb2")


class TestUmount:
    def test_failure_raises(self, fake_commands):
        fake_commands.fail("umount", stderr="target is busy")

        with pytest.raises(UnmountFailedError) as exc_info:
            mounts.umount("/dev/sdb1")

        assert exc_info.value.target == "/dev/sdb1"
        assert "target is busy" in str(exc_info.value)

    def test_missing_umount_raises(self, fake_commands):
        fake_commands.missing("umount")

        with pytest.raises(UnmountFailedError) as exc_info:
            mounts.umount("/dev/sdb1")

        assert "No such file or directory" in exc_info.value.output

    def test_swap_file_on_mount_is_switched_off_first(self, fake_commands, proc_files):
        proc_files["mounts"].write_text("/dev/sdb1 /media/stick vfat rw 0 0\n")
        with open(proc_files["swaps"], "a") as swaps:
            swaps.write("/media/stick/swapfile  file  1024  0  -2\n")

        mounts.umount("/dev/sdb1")

        assert fake_commands.calls == [
            ["swapoff", "/media/stick/swapfile"],
            ["umount", "/dev/sdb1"],
        ]

    def test_umount_partitions(self, fake_commands, proc_files):
        proc_files["mounts"].write_text(
            "/dev/sdb1 /media/a vfat rw 0 0\n/dev/sdb3 /media/b ext4 rw 0 0\n"
        )

        mounts.umount_partitions("/dev/sdb")

        assert fake_commands.named("umount") == [
            ["umount", "/dev/sdb1"],
            ["umount", "/dev/sdb3"],
        ]
