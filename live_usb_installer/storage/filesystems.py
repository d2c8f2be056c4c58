"""Filesystem creation for freshly created partitions.

Filesystems per role:
    boot:         FAT (mkfs.vfat), fixed boot label
    system:       ext4, label taken from the installation source
    exchange:     FAT32, exFAT or NTFS (quick format), operator label
    persistence:  ext4 (or the configured data filesystem), forced, with
                  periodic checks disabled and a default persistence.conf

Every mkfs failure is fatal and raises FormatOperationError with the
captured command output.
"""

from pathlib import Path

from live_usb_installer.domain.models import (
    ExchangeFileSystem,
    Partition,
    ProvisioningConfig,
)
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage import mounts, settle
from live_usb_installer.storage.commands import run_checked
from live_usb_installer.storage.exceptions import (
    FormatOperationError,
    UnmountFailedError,
)


PERSISTENCE_CONF_NAME = "persistence.conf"
PERSISTENCE_CONF_CONTENT = "/ union,source=.\n"

log = LoggerFactory.for_format()


def format_boot_and_system(
    boot_device: str, system_device: str, config: ProvisioningConfig
) -> None:
    """Format the boot partition as FAT and the system partition as ext4."""
    log.info(f"Creating boot filesystem on {boot_device}")
    run_checked(
        ["mkfs.vfat", "-n", config.boot_label, boot_device],
        FormatOperationError,
        f"Could not create boot partition filesystem on {boot_device}",
        boot_device,
    )

    log.info(f"Creating system filesystem on {system_device}")
    run_checked(
        ["mkfs.ext4", "-L", config.system_partition_label, system_device],
        FormatOperationError,
        f"Could not create system partition filesystem on {system_device}",
        system_device,
    )


def exchange_format_command(
    device: str, label: str, filesystem: ExchangeFileSystem
) -> list[str]:
    if filesystem is ExchangeFileSystem.FAT32:
        return ["mkfs.vfat", "-n", label, device]
    if filesystem is ExchangeFileSystem.EXFAT:
        return ["mkfs.exfat", "-n", label, device]
    # NTFS: -f skips zeroing and bad sector checks
    return ["mkfs.ntfs", "-f", "-L", label, device]


def format_exchange(device: str, label: str, filesystem: ExchangeFileSystem) -> None:
    """Format the exchange partition."""
    log.info(f"Creating {filesystem.value} exchange filesystem on {device}")
    run_checked(
        exchange_format_command(device, label, filesystem),
        FormatOperationError,
        f"Could not create exchange partition filesystem on {device}",
        device,
    )


def write_persistence_conf(mount_path: str) -> None:
    """Write the default persistence.conf into a mounted persistence root."""
    path = Path(mount_path) / PERSISTENCE_CONF_NAME
    with open(path, "w", encoding="utf-8") as conf_file:
        conf_file.write(PERSISTENCE_CONF_CONTENT)
        conf_file.flush()
    log.debug(f"Wrote {path}")


def format_persistence(
    device: str, filesystem: str, config: ProvisioningConfig
) -> None:
    """Format and tune the persistence partition and write persistence.conf.

    mkfs runs with -F: a partition created at the exact location of a
    differently typed old filesystem would otherwise make mkfs interactive.
    """
    if mounts.is_mounted(device):
        mounts.umount(device)

    log.info(f"Creating {filesystem} persistence filesystem on {device}")
    run_checked(
        [f"mkfs.{filesystem}", "-F", "-L", config.persistence_label, device],
        FormatOperationError,
        f"Could not create persistence partition filesystem on {device}",
        device,
    )

    # no reserved blocks, no mount-count or interval triggered fsck
    run_checked(
        ["tune2fs", "-m", "0", "-c", "0", "-i", "0", device],
        FormatOperationError,
        f"Could not tune persistence partition filesystem on {device}",
        device,
    )

    # the new filesystem must be known to udev before it can be mounted
    settle.wait_for_partition_nodes([device], device=device)

    partition = Partition.from_device_and_number(device)
    mount_info = mounts.mount_partition(partition)
    mount_path = mounts.require_mount_path(mount_info, partition, "persistence")
    write_persistence_conf(mount_path)
    if not mount_info.already_mounted and not mounts.umount_partition(partition):
        raise UnmountFailedError(device)
