"""Installation sources: where boot, system and exchange payloads come from.

DirectoryInstallationSource reads a live system laid out in directories:

    <root>/boot       contents of the boot partition (isolinux/ or syslinux/)
    <root>/system     contents of the system partition
    <root>/exchange   optional payload for the exchange partition
    <root>/mbr.bin    optional MBR image (default: the syslinux one)

Instead of a root directory, the boot and system directories may be the
partitions of another live medium; they are mounted on demand and unmounted
again by unmount_tmp_partitions().
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Optional

from live_usb_installer.domain.models import (
    DataPartitionMode,
    Partition,
    ProvisioningConfig,
)
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage import bootconfig, mounts
from live_usb_installer.storage.commands import run_command
from live_usb_installer.storage.copy_jobs import Source
from live_usb_installer.storage.exceptions import UnmountFailedError


DEFAULT_MBR_PATH = "/usr/lib/syslinux/mbr/mbr.bin"
DEFAULT_SYSTEM_LABEL = "system"

# boot files some firmware expects on the first (exchange) partition
EXCHANGE_BOOT_PATTERN = r"(?i)efi|boot"

log = LoggerFactory.for_system()


def directory_size(path: Path) -> int:
    """Bytes used by the regular files below a directory."""
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError as e:
                log.warning(f"Could not stat {name} in {root}: {e}")
    return total


class DirectoryInstallationSource:
    def __init__(
        self,
        boot_directory: Path,
        system_directory: Path,
        exchange_directory: Optional[Path] = None,
        mbr_path: Optional[str] = None,
        data_partition: Optional[Partition] = None,
        system_partition_label: str = DEFAULT_SYSTEM_LABEL,
    ):
        self.boot_directory = Path(boot_directory)
        self.system_directory = Path(system_directory)
        self.exchange_directory = Path(exchange_directory) if exchange_directory else None
        self.mbr_path = mbr_path or DEFAULT_MBR_PATH
        self.data_partition = data_partition
        self.system_partition_label = system_partition_label
        self.data_partition_mode: DataPartitionMode = bootconfig.get_data_partition_mode(
            str(self.boot_directory)
        )
        self._tmp_partitions: list[Partition] = []

    @classmethod
    def from_root(
        cls,
        root: Path,
        data_partition: Optional[Partition] = None,
        system_partition_label: str = DEFAULT_SYSTEM_LABEL,
    ) -> DirectoryInstallationSource:
        root = Path(root)
        exchange = root / "exchange"
        mbr = root / "mbr.bin"
        return cls(
            boot_directory=root / "boot",
            system_directory=root / "system",
            exchange_directory=exchange if exchange.is_dir() else None,
            mbr_path=str(mbr) if mbr.is_file() else None,
            data_partition=data_partition,
            system_partition_label=system_partition_label,
        )

    @classmethod
    def from_partitions(
        cls,
        boot_partition: Partition,
        system_partition: Partition,
        data_partition: Optional[Partition] = None,
        system_partition_label: str = DEFAULT_SYSTEM_LABEL,
    ) -> DirectoryInstallationSource:
        """Source backed by the partitions of another live medium."""
        tmp_partitions = []
        paths = []
        for partition, role in ((boot_partition, "boot"), (system_partition, "system")):
            info = mounts.mount_partition(partition)
            paths.append(mounts.require_mount_path(info, partition, f"source {role}"))
            if not info.already_mounted:
                tmp_partitions.append(partition)
        source = cls(
            boot_directory=Path(paths[0]),
            system_directory=Path(paths[1]),
            data_partition=data_partition,
            system_partition_label=system_partition_label,
        )
        source._tmp_partitions = tmp_partitions
        return source

    @property
    def system_size(self) -> int:
        return directory_size(self.system_directory)

    def provisioning_config(self, **labels: str) -> ProvisioningConfig:
        """Sizing and labels for a run, computed once from this source."""
        config = ProvisioningConfig.from_system_size(
            self.system_size, self.system_partition_label, **labels
        )
        log.info(
            f"system size {config.system_size} Byte, "
            f"enlarged {config.system_size_enlarged} Byte"
        )
        return config

    def boot_copy_source(self) -> Source:
        return Source(self.boot_directory)

    def system_copy_source(self) -> Source:
        return Source(self.system_directory)

    def exchange_boot_copy_source(self) -> Source:
        return Source(self.boot_directory, EXCHANGE_BOOT_PATTERN)

    def exchange_copy_source(self) -> Source:
        if self.exchange_directory is None:
            # nothing selected by the pattern
            return Source(self.boot_directory, r"(?!)")
        return Source(self.exchange_directory)

    def install_syslinux(self, boot_device: str) -> subprocess.CompletedProcess:
        return run_command(["syslinux", "-d", "syslinux", "-i", boot_device])

    def unmount_tmp_partitions(self) -> None:
        while self._tmp_partitions:
            partition = self._tmp_partitions.pop()
            if not mounts.umount_partition(partition):
                raise UnmountFailedError(partition.device_node)
