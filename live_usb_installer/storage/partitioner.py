"""Destructive repartitioning of the target device.

Sequence:
    1. Unmount every mounted partition of the device
    2. Switch off swap partitions located on the device
    3. Create a fresh MBR partition table
    4. Create the partitions of the planned layout in one parted call and fix
       the partition type ids
    5. Re-probe the device and wait for the new partition nodes

Steps 3 and 4 are retried exactly once: some flash drive controllers fail the
first low-level repartitioning and reliably succeed on an immediate second
attempt. A second failure is fatal. There is no rollback; a failed run leaves
the device in whatever state the failing command produced.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Optional

from live_usb_installer.domain.models import (
    ExchangeFileSystem,
    Partition,
    PartitionRole,
    StorageDevice,
)
from live_usb_installer.logging import EventLogger, LoggerFactory
from live_usb_installer.storage import mounts, settle, swap
from live_usb_installer.storage.commands import run_checked, run_command
from live_usb_installer.storage.exceptions import RepartitionError
from live_usb_installer.storage.planner import PartitionLayout


REPARTITION_ATTEMPTS = 2

UDISKS1_SERVICE = "org.freedesktop.UDisks"

log = LoggerFactory.for_partition()


@dataclass(frozen=True)
class DestinationPartitions:
    """Handles for the partitions created on the device."""

    boot: Partition
    system: Partition
    exchange: Optional[Partition] = None
    persistence: Optional[Partition] = None


def _udisks1_available() -> bool:
    if not shutil.which("dbus-send"):
        return False
    result = run_command(
        [
            "dbus-send",
            "--system",
            "--print-reply",
            "--dest=org.freedesktop.DBus",
            "/org/freedesktop/DBus",
            "org.freedesktop.DBus.NameHasOwner",
            f"string:{UDISKS1_SERVICE}",
        ],
        log_output=False,
    )
    return result.returncode == 0 and "boolean true" in (result.stdout or "")


def create_partition_table(device: StorageDevice) -> None:
    """Create a fresh MBR partition table on the whole device.

    A fresh table is required: drives previously written with a dd'ed
    hybrid ISO do not boot otherwise.
    """
    device_node = device.device_node
    if _udisks1_available():
        # --print-reply makes the call synchronous
        command = [
            "dbus-send",
            "--system",
            "--print-reply",
            f"--dest={UDISKS1_SERVICE}",
            f"/org/freedesktop/UDisks/devices/{device.name}",
            "org.freedesktop.UDisks.Device.PartitionTableCreate",
            "string:mbr",
            "array:string:",
        ]
    else:
        command = ["parted", "-s", device_node, "mklabel", "msdos"]
    log.debug(f"Creating MBR partition table on {device_node}")
    run_checked(
        command,
        RepartitionError,
        f"Could not create partition table on {device_node}",
        device_node,
    )
    settle.udev_settle()


def parted_command(device: StorageDevice, layout: PartitionLayout) -> list[str]:
    return ["parted", "-s", "-a", "optimal", device.device_node, *layout.parted_arguments()]


def fix_partition_types(
    device: StorageDevice,
    layout: PartitionLayout,
    exchange_filesystem: ExchangeFileSystem,
) -> None:
    """Set MBR type ids: boot "ef", Linux data "83", exchange "c" or "7"."""
    device_node = device.device_node
    for number, type_id in layout.type_ids(exchange_filesystem):
        run_checked(
            ["sfdisk", "--part-type", device_node, str(number), type_id],
            RepartitionError,
            f"Could not set type of partition {number} on {device_node} to {type_id}",
            device_node,
        )


def expected_nodes(device: StorageDevice, layout: PartitionLayout) -> list[str]:
    return [device.partition_node(number) for number in range(1, len(layout.roles) + 1)]


def _create_partitions(
    device: StorageDevice,
    layout: PartitionLayout,
    exchange_filesystem: ExchangeFileSystem,
) -> None:
    create_partition_table(device)

    device_node = device.device_node
    run_checked(
        parted_command(device, layout),
        RepartitionError,
        f"Could not repartition {device_node}",
        device_node,
    )
    settle.rescan_device(device_node)
    settle.wait_for_partition_nodes(
        expected_nodes(device, layout), device=device_node, error_cls=RepartitionError
    )

    fix_partition_types(device, layout, exchange_filesystem)


def create_partitions_with_retry(
    device: StorageDevice,
    layout: PartitionLayout,
    exchange_filesystem: ExchangeFileSystem,
) -> None:
    """Create table and partitions, retrying the whole step once."""
    for attempt in range(1, REPARTITION_ATTEMPTS + 1):
        try:
            _create_partitions(device, layout, exchange_filesystem)
            return
        except RepartitionError as error:
            if attempt == REPARTITION_ATTEMPTS:
                log.error(
                    f"Repartitioning {device.device_node} failed again, giving up: {error}"
                )
                raise
            log.warning(
                f"Repartitioning {device.device_node} failed "
                f"(attempt {attempt}/{REPARTITION_ATTEMPTS}), retrying: {error}"
            )


def partition_handles(
    device: StorageDevice, layout: PartitionLayout
) -> DestinationPartitions:
    """In-memory handles for the partitions of a layout."""
    handles: dict[PartitionRole, Partition] = {}
    for role in layout.roles:
        handles[role] = Partition(device=device.name, number=layout.number(role))
    return DestinationPartitions(
        boot=handles[PartitionRole.BOOT],
        system=handles[PartitionRole.SYSTEM],
        exchange=handles.get(PartitionRole.EXCHANGE),
        persistence=handles.get(PartitionRole.PERSISTENCE),
    )


def repartition(
    device: StorageDevice,
    layout: PartitionLayout,
    exchange_filesystem: ExchangeFileSystem,
) -> DestinationPartitions:
    """Repartition a device according to a planned layout.

    Raises:
        UnmountFailedError: If a partition of the device cannot be unmounted
        SwapoffError: If an active swap partition cannot be switched off
        RepartitionError: If creating the partitions failed twice
        ProvisioningError: If the new partition nodes never appear
    """
    device_node = device.device_node
    EventLogger.log_layout_planned(
        log, device_node, layout.state.name, [role.value for role in layout.roles]
    )
    log.debug(
        f"size of {device_node} = {device.size_bytes} Byte, "
        f"exchangeMB = {layout.sizes.exchange_mb} MiB, "
        f"persistenceMB = {layout.sizes.persistence_mb} MiB"
    )

    mounts.umount_partitions(device_node)
    swap.disable_swap_on_device(device_node)

    create_partitions_with_retry(device, layout, exchange_filesystem)

    # udisks may not know the new partitions until the device is re-probed
    settle.rescan_device(device_node)
    settle.wait_for_partition_nodes(expected_nodes(device, layout), device=device_node)

    return partition_handles(device, layout)
