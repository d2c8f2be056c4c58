"""Copy boot, system, exchange and persistence payloads to a new device.

The destination partitions must already be formatted. Boot and system stay
mounted after copy_exchange_boot_and_system() because the bootloader is
installed afterwards; the caller unmounts them at the end of the run.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional, Protocol

from live_usb_installer.domain.models import (
    DataPartitionMode,
    ExchangeFileSystem,
    InstallOptions,
    Partition,
    StorageDevice,
)
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage import bootconfig, mounts
from live_usb_installer.storage.commands import command_output, run_checked, run_tolerated
from live_usb_installer.storage.copy_jobs import CopyJob, CopyJobsInfo, FileCopier, Source
from live_usb_installer.storage.exceptions import ProvisioningError, UnmountFailedError
from live_usb_installer.storage.partitioner import DestinationPartitions


HIDDEN_MANIFEST_NAME = ".hidden"

log = LoggerFactory.for_copy()


class InstallationSource(Protocol):
    """The running live system (or image) that is copied to the device."""

    data_partition: Optional[Partition]
    data_partition_mode: DataPartitionMode
    mbr_path: str

    def boot_copy_source(self) -> Source: ...

    def system_copy_source(self) -> Source: ...

    def exchange_boot_copy_source(self) -> Source: ...

    def exchange_copy_source(self) -> Source: ...

    def install_syslinux(self, boot_device: str) -> subprocess.CompletedProcess: ...

    def unmount_tmp_partitions(self) -> None: ...


def _mount(partition: Partition, role: str) -> str:
    info = mounts.mount_partition(partition)
    return mounts.require_mount_path(info, partition, role)


def prepare_boot_and_system_copy_jobs(
    source: InstallationSource,
    device: StorageDevice,
    boot: Partition,
    exchange: Optional[Partition],
    system: Partition,
    exchange_filesystem: ExchangeFileSystem,
) -> CopyJobsInfo:
    """Mount boot and system and build their copy jobs.

    Boot files are also copied to the exchange partition when it is FAT32
    on removable media; some firmware only looks there.
    """
    boot_path = _mount(boot, "boot")
    system_path = _mount(system, "system")

    info = CopyJobsInfo(
        destination_boot_path=boot_path,
        destination_system_path=system_path,
        boot_copy_job=CopyJob((source.boot_copy_source(),), (boot_path,)),
        system_copy_job=CopyJob((source.system_copy_source(),), (system_path,)),
    )

    if (
        exchange is not None
        and device.removable
        and exchange_filesystem is ExchangeFileSystem.FAT32
    ):
        exchange_path = _mount(exchange, "exchange")
        info.destination_exchange_path = exchange_path
        info.boot_files_copy_job = CopyJob(
            (source.exchange_boot_copy_source(),), (exchange_path,)
        )
    return info


def _fatattr_hide(path: Path) -> None:
    result = run_tolerated(["fatattr", "+h", str(path)])
    if result is not None and result.returncode != 0:
        log.warning(f"Could not hide {path}: {command_output(result)}")


def hide_boot_files(boot_files_job: CopyJob, exchange_path: str) -> list[str]:
    """Hide the duplicated boot files on the exchange partition.

    The FAT hidden attribute works for Windows, a .hidden manifest for
    macOS; the manifest itself gets the hidden attribute as well.

    Returns:
        The names that were hidden
    """
    base_directory = Path(boot_files_job.sources[0].base_directory)
    try:
        names = sorted(entry.name for entry in base_directory.iterdir())
    except OSError as error:
        log.warning(f"Could not list boot files in {base_directory}: {error}")
        return []

    destination = Path(exchange_path)
    hidden = [name for name in names if (destination / name).exists()]
    for name in hidden:
        _fatattr_hide(destination / name)

    manifest = destination / HIDDEN_MANIFEST_NAME
    try:
        with open(manifest, "w", encoding="utf-8") as manifest_file:
            for name in hidden:
                manifest_file.write(name + "\n")
    except OSError as error:
        log.warning(f"Could not write {manifest}: {error}")

    _fatattr_hide(manifest)
    return hidden


def copy_exchange_boot_and_system(
    source: InstallationSource,
    file_copier: FileCopier,
    device: StorageDevice,
    partitions: DestinationPartitions,
    options: InstallOptions,
) -> CopyJobsInfo:
    """Copy all payloads in one batch and fix up the boot configuration."""
    exchange_path = None
    exchange_job = None
    if not options.upgrading and options.copy_exchange:
        if partitions.exchange is None:
            log.warning("Exchange copy selected but there is no exchange partition")
        else:
            exchange_path = _mount(partitions.exchange, "exchange")
            exchange_job = CopyJob((source.exchange_copy_source(),), (exchange_path,))

    info = prepare_boot_and_system_copy_jobs(
        source,
        device,
        partitions.boot,
        partitions.exchange,
        partitions.system,
        options.exchange_filesystem,
    )
    info.exchange_copy_job = exchange_job
    if exchange_path is None:
        exchange_path = info.destination_exchange_path
    info.destination_exchange_path = exchange_path

    try:
        file_copier.copy(
            exchange_job, info.boot_files_copy_job, info.boot_copy_job, info.system_copy_job
        )
    except OSError as error:
        raise ProvisioningError(
            f"Copying files to {device.device_node} failed: {error}", device.device_node
        ) from error

    if info.boot_files_copy_job is not None and exchange_path is not None:
        hide_boot_files(info.boot_files_copy_job, exchange_path)
        if not options.upgrading:
            bootconfig.set_data_partition_mode(
                source.data_partition_mode, options.data_partition_mode, exchange_path
            )

    source.unmount_tmp_partitions()
    if exchange_path is not None and partitions.exchange is not None:
        if not mounts.umount_partition(partitions.exchange):
            raise UnmountFailedError(partitions.exchange.device_node)

    # usb flash drives written with an isohybrid image also carry isolinux,
    # so this runs regardless of the device type
    bootconfig.isolinux_to_syslinux(info.destination_boot_path)

    if not options.upgrading:
        bootconfig.set_data_partition_mode(
            source.data_partition_mode,
            options.data_partition_mode,
            info.destination_boot_path,
        )
    return info


def copy_persistence(
    source: InstallationSource,
    options: InstallOptions,
    destination: Optional[Partition],
) -> bool:
    """Copy the source persistence partition to the destination.

    Only for installs with persistence copy selected and a destination
    persistence partition. Each side is unmounted afterwards unless it was
    mounted before.

    Returns:
        True if the persistence partition was copied
    """
    if options.upgrading or not options.copy_persistence or destination is None:
        return False
    if source.data_partition is None:
        log.warning("Persistence copy selected but the source has no data partition")
        return False

    source_info = mounts.mount_partition(source.data_partition)
    source_path = mounts.require_mount_path(source_info, source.data_partition, "source data")
    destination_info = mounts.mount_partition(destination)
    destination_path = mounts.require_mount_path(
        destination_info, destination, "destination data"
    )

    log.info(f"Copying persistence {source_path} -> {destination_path}")
    # "src/." includes hidden files; -a keeps symlinks, owners and modes
    run_checked(
        ["cp", "-a", f"{source_path}/.", f"{destination_path}/"],
        ProvisioningError,
        f"Could not copy persistence partition to {destination.device_node}",
        destination.device_node,
    )

    if not source_info.already_mounted and not mounts.umount_partition(
        source.data_partition
    ):
        raise UnmountFailedError(source.data_partition.device_node)
    if not destination_info.already_mounted and not mounts.umount_partition(destination):
        raise UnmountFailedError(destination.device_node)
    return True
