"""Mount table queries and mount/unmount discipline.

The live mount table (/proc/mounts) is the only source of truth for mount
state. Partitions are mounted below a private mount root and the caller gets
a MountInfo telling whether the partition had already been mounted before,
so it never unmounts something it did not mount itself.
"""

from __future__ import annotations

import contextlib
import os
import re
from pathlib import Path
from typing import Optional

from live_usb_installer.config import settings
from live_usb_installer.domain.models import MountInfo, Partition, belongs_to_device
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage import swap
from live_usb_installer.storage.commands import command_output, run_command
from live_usb_installer.storage.exceptions import (
    MountPathUnavailableError,
    UnmountFailedError,
)


MOUNTS_PATH = Path("/proc/mounts")

log = LoggerFactory.for_system()


def _decode_mount_field(value: str) -> str:
    # /proc/mounts escapes space, tab, newline and backslash as octal
    return re.sub(r"\\([0-7]{3})", lambda match: chr(int(match.group(1), 8)), value)


def read_mount_table() -> list[tuple[str, str]]:
    """Return (device, mount point) pairs from the live mount table."""
    try:
        lines = MOUNTS_PATH.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    entries = []
    for line in lines:
        parts = line.split()
        if len(parts) > 1:
            entries.append((_decode_mount_field(parts[0]), _decode_mount_field(parts[1])))
    return entries


def mounted_partitions(device_node: str) -> list[tuple[str, str]]:
    return [
        (node, mountpoint)
        for node, mountpoint in read_mount_table()
        if belongs_to_device(node, device_node)
    ]


def get_mount_path(node: str) -> Optional[str]:
    for mounted_node, mountpoint in read_mount_table():
        if mounted_node == node:
            return mountpoint
    return None


def is_mounted(node: str) -> bool:
    return get_mount_path(node) is not None


def umount(device_or_mountpoint: str) -> None:
    """Unmount a device node or mount point.

    Swap files living on the mount are switched off first.

    Raises:
        SwapoffError: If an active swap file cannot be disabled
        UnmountFailedError: If umount fails
    """
    for node, mountpoint in read_mount_table():
        if device_or_mountpoint in (node, mountpoint):
            swap.disable_swap_on_mountpoint(mountpoint, node)

    try:
        result = run_command(["umount", device_or_mountpoint])
    except OSError as error:
        log.error(f"Failed to unmount {device_or_mountpoint}: {error}")
        raise UnmountFailedError(device_or_mountpoint, str(error)) from error
    if result.returncode != 0:
        output = command_output(result)
        log.error(f"Failed to unmount {device_or_mountpoint}: {output}")
        raise UnmountFailedError(device_or_mountpoint, output)
    log.debug(f"Unmounted {device_or_mountpoint}")


def umount_partitions(device_node: str) -> None:
    """Unmount every mounted partition of a device."""
    log.trace(f"umount_partitions({device_node})")
    for node, mountpoint in mounted_partitions(device_node):
        log.info(f"Unmounting {node} from {mountpoint}")
        umount(node)


def mount_partition(partition: Partition, mount_root: Optional[str] = None) -> MountInfo:
    """Mount a partition below the mount root unless it is already mounted.

    Returns a MountInfo whose mount_path is None when mounting failed.
    """
    node = partition.device_node
    existing = get_mount_path(node)
    if existing:
        log.debug(f"{node} already mounted at {existing}")
        return MountInfo(mount_path=existing, already_mounted=True)

    root = Path(mount_root or settings.get_setting("mount_root"))
    path = root / partition.device_and_number
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        log.error(f"Could not create mount point {path}: {error}")
        return MountInfo(mount_path=None, already_mounted=False)

    failure: Optional[str] = None
    try:
        result = run_command(["mount", node, str(path)])
    except OSError as error:
        failure = str(error)
    else:
        if result.returncode != 0:
            failure = command_output(result)
    if failure is not None:
        log.error(f"Failed to mount {node} at {path}: {failure}")
        with contextlib.suppress(OSError):
            path.rmdir()
        return MountInfo(mount_path=None, already_mounted=False)

    log.debug(f"Mounted {node} at {path}")
    return MountInfo(mount_path=str(path), already_mounted=False)


def require_mount_path(info: MountInfo, partition: Partition, role: str) -> str:
    """Mount path of a MountInfo, or MountPathUnavailableError."""
    if not info.mount_path:
        raise MountPathUnavailableError(partition.device_node, role)
    return info.mount_path


def umount_partition(partition: Partition) -> bool:
    """Unmount a partition if it is mounted.

    Returns:
        True if the partition is unmounted afterwards, False otherwise
    """
    node = partition.device_node
    mountpoint = get_mount_path(node)
    if mountpoint is None:
        log.info(f"{partition.device_and_number} was NOT mounted...")
        return True
    try:
        umount(node)
    except UnmountFailedError as error:
        log.error(str(error))
        return False
    log.info(f"{partition.device_and_number} was successfully umounted")
    with contextlib.suppress(OSError):
        root = Path(settings.get_setting("mount_root"))
        if Path(mountpoint).parent == root:
            os.rmdir(mountpoint)
    return True
