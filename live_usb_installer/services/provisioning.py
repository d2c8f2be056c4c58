"""Provisioning pipeline: plan, repartition, format, copy, make bootable.

Each stage runs to completion before the next one starts and any failure
aborts the run. There is no rollback: once repartitioning has begun, an
aborted run leaves the device in an unspecified state and it must be
checked for mounted partitions before it is provisioned again.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generator, Optional

from live_usb_installer.domain.models import (
    InstallOptions,
    PartitionState,
    ProvisioningConfig,
    RepartitionStrategy,
    StorageDevice,
)
from live_usb_installer.logging import EventLogger, operation_context
from live_usb_installer.storage import (
    bootloader,
    filesystems,
    installation,
    mounts,
    partitioner,
    planner,
)
from live_usb_installer.storage.copy_jobs import FileCopier
from live_usb_installer.storage.device_lock import device_operation
from live_usb_installer.storage.exceptions import DeviceTooSmallError, UnmountFailedError
from live_usb_installer.storage.installation import InstallationSource
from live_usb_installer.storage.partitioner import DestinationPartitions
from live_usb_installer.storage.planner import PartitionLayout

if TYPE_CHECKING:
    from loguru import Logger


@dataclass(frozen=True)
class SizingRequest:
    """Exchange partition sizing input for one run."""

    exchange_mb: int = 0
    strategy: RepartitionStrategy = RepartitionStrategy.REMOVE
    resized_exchange_mb: int = 0


def plan(
    device: StorageDevice,
    config: ProvisioningConfig,
    options: InstallOptions,
    sizing: Optional[SizingRequest] = None,
) -> PartitionLayout:
    """Classify a device and plan its partition layout.

    Raises:
        DeviceTooSmallError: If the device cannot hold the system
    """
    sizing = sizing or SizingRequest()
    state = planner.classify(device.size_bytes, config.system_size_enlarged)
    if options.upgrading:
        sizes = planner.size_for_upgrade(
            device, sizing.strategy, sizing.resized_exchange_mb, config
        )
    else:
        sizes = planner.size_for_install(device, sizing.exchange_mb, config)
    if sizes is None or state is PartitionState.TOO_SMALL:
        raise DeviceTooSmallError(
            device.device_node, device.size_bytes, config.system_size_enlarged
        )
    return planner.plan_layout(state, device.removable, sizes)


def format_partitions(
    partitions: DestinationPartitions,
    options: InstallOptions,
    config: ProvisioningConfig,
) -> None:
    """Create the filesystems: exchange, persistence, then boot and system."""
    if partitions.exchange is not None:
        filesystems.format_exchange(
            partitions.exchange.device_node,
            options.exchange_label,
            options.exchange_filesystem,
        )
    if partitions.persistence is not None:
        filesystems.format_persistence(
            partitions.persistence.device_node,
            options.data_partition_filesystem,
            config,
        )
    filesystems.format_boot_and_system(
        partitions.boot.device_node, partitions.system.device_node, config
    )


@contextmanager
def _stage(log: Logger, name: str) -> Generator[None, None, None]:
    start = time.monotonic()
    log.info(f"Stage {name}")
    yield
    EventLogger.log_stage_completed(log, name, time.monotonic() - start)


def copy_to_storage_device(
    source: InstallationSource,
    file_copier: FileCopier,
    device: StorageDevice,
    options: InstallOptions,
    config: ProvisioningConfig,
    sizing: Optional[SizingRequest] = None,
) -> DestinationPartitions:
    """Install the source onto a storage device.

    Raises:
        DeviceBusyError: If the device is already being provisioned
        ProvisioningError: On any fatal failure; the device is left as the
            failing step left it
    """
    mode = "upgrade" if options.upgrading else "install"
    with device_operation(device.name), operation_context(
        mode, device=device.device_node
    ) as log:
        EventLogger.log_provisioning_started(log, device.device_node, device.size_bytes, mode)

        layout = plan(device, config, options, sizing)

        with _stage(log, "repartition"):
            partitions = partitioner.repartition(
                device, layout, options.exchange_filesystem
            )

        with _stage(log, "format"):
            format_partitions(partitions, options, config)

        with _stage(log, "copy"):
            installation.copy_exchange_boot_and_system(
                source, file_copier, device, partitions, options
            )

        with _stage(log, "persistence"):
            installation.copy_persistence(source, options, partitions.persistence)

        with _stage(log, "bootloader"):
            bootloader.make_bootable(source, device.device_node, partitions.boot)

        with _stage(log, "unmount"):
            if not mounts.umount_partition(partitions.boot):
                raise UnmountFailedError(partitions.boot.device_node)
            if not mounts.umount_partition(partitions.system):
                raise UnmountFailedError(partitions.system.device_node)
            source.unmount_tmp_partitions()

        return partitions
