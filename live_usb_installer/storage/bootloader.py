"""Bootloader and master boot record installation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from live_usb_installer.domain.models import Partition
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage.commands import command_output, run_checked
from live_usb_installer.storage.exceptions import BootSectorError

if TYPE_CHECKING:
    from live_usb_installer.storage.installation import InstallationSource


log = LoggerFactory.for_boot()


def make_bootable(
    source: InstallationSource, device_node: str, boot_partition: Partition
) -> None:
    """Install syslinux on the boot partition and the MBR on the device.

    Raises:
        BootSectorError: If syslinux or writing the MBR fails
    """
    boot_device = boot_partition.device_node
    log.info(f"Installing syslinux on {boot_device}")
    try:
        result = source.install_syslinux(boot_device)
    except OSError as error:
        raise BootSectorError(
            f"Could not install bootloader on {boot_device}: {error}", boot_device
        ) from error
    if result.returncode != 0:
        output = command_output(result)
        log.error(f"syslinux failed on {boot_device}: {output}")
        raise BootSectorError(
            f"Could not install bootloader on {boot_device}", boot_device, output
        )

    log.info(f"Writing MBR {source.mbr_path} to {device_node}")
    # verbatim copy of the image onto the start of the device
    run_checked(
        ["dd", f"if={source.mbr_path}", f"of={device_node}", "conv=notrunc,fsync"],
        BootSectorError,
        f"Copying the MBR to {device_node} failed",
        device_node,
    )
    run_checked(
        ["sync"],
        BootSectorError,
        f"sync after writing MBR to {device_node} failed",
        device_node,
    )
