"""Detect and disable swap areas before destructive operations.

Active swap partitions on the target device, and swap files living on one
of its mount points, must be switched off before the device is unmounted or
repartitioned. When switching a swap area off would leave less than the
free-memory floor, the operator is asked first. The confirmation is an
acknowledgement, not an abort: the area is switched off either way.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from live_usb_installer.config import settings
from live_usb_installer.domain.models import belongs_to_device
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage.commands import run_checked
from live_usb_installer.storage.exceptions import SwapoffError


SWAPS_PATH = Path("/proc/swaps")
MEMINFO_PATH = Path("/proc/meminfo")

# Called with a warning message, returns True to proceed
ConfirmCallback = Callable[[str], bool]

log = LoggerFactory.for_swap()


def _always_confirm(message: str) -> bool:
    return True


_confirm: ConfirmCallback = _always_confirm


def configure_swap_guard(confirm: Optional[ConfirmCallback] = None) -> None:
    """Install the operator confirmation callback (default: confirm)."""
    global _confirm
    _confirm = confirm or _always_confirm


@dataclass(frozen=True)
class SwapInfo:
    """One line of /proc/swaps.

    Sizes in /proc/swaps are given in KiB; stored here in bytes.
    """

    file: str
    swap_type: str
    size: int
    used: int

    @classmethod
    def from_line(cls, line: str) -> SwapInfo:
        parts = line.split()
        if len(parts) < 4:
            raise ValueError(f"Malformed swap line: {line!r}")
        return cls(
            file=parts[0].replace("\\040", " "),
            swap_type=parts[1],
            size=int(parts[2]) * 1024,
            used=int(parts[3]) * 1024,
        )

    @property
    def remaining_free_memory(self) -> int:
        """Free RAM plus free swap left once this area is switched off.

        Used pages move into RAM and the area's free pages vanish, so the
        total shrinks by the whole area size.
        """
        meminfo = read_meminfo()
        return meminfo.get("MemFree", 0) + meminfo.get("SwapFree", 0) - self.size


def read_meminfo() -> dict[str, int]:
    """/proc/meminfo values in bytes."""
    values: dict[str, int] = {}
    try:
        lines = MEMINFO_PATH.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return values
    for line in lines:
        key, _, rest = line.partition(":")
        fields = rest.split()
        if not fields:
            continue
        try:
            amount = int(fields[0])
        except ValueError:
            continue
        if len(fields) > 1 and fields[1].lower() == "kb":
            amount *= 1024
        values[key.strip()] = amount
    return values


def read_swaps() -> list[SwapInfo]:
    """Active swap areas, skipping the header line."""
    try:
        lines = SWAPS_PATH.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    swaps = []
    for line in lines[1:]:
        if not line.strip():
            continue
        try:
            swaps.append(SwapInfo.from_line(line))
        except ValueError as error:
            log.warning(str(error))
    return swaps


def _swapoff(swap_info: SwapInfo, location: str) -> None:
    minimum_free_memory = settings.get_int(
        "minimum_free_memory", settings.DEFAULT_MINIMUM_FREE_MEMORY
    )
    remaining = swap_info.remaining_free_memory
    if remaining < minimum_free_memory:
        message = (
            f"Switching off swap {swap_info.file} on {location} leaves only "
            f"{max(remaining, 0) // (1024 * 1024)} MiB of free memory."
        )
        log.warning(message)
        if _confirm(message):
            log.info(f"Operator confirmed swapoff of {swap_info.file}")
        else:
            log.warning(
                f"Operator declined, swapoff of {swap_info.file} is still required"
            )

    log.info(f"Switching off swap {swap_info.file} ({swap_info.swap_type})")
    run_checked(
        ["swapoff", swap_info.file],
        SwapoffError,
        f"Could not switch off swap {swap_info.file}",
        swap_info.file,
    )


def disable_swap_on_device(device_node: str) -> list[str]:
    """Switch off swap partitions located on a device.

    Returns:
        The swap areas that were switched off
    """
    disabled = []
    for swap_info in read_swaps():
        if swap_info.swap_type == "partition" and belongs_to_device(
            swap_info.file, device_node
        ):
            _swapoff(swap_info, device_node)
            disabled.append(swap_info.file)
    return disabled


def disable_swap_on_mountpoint(mountpoint: str, device: str = "") -> list[str]:
    """Switch off swap files living below a mount point."""
    prefix = mountpoint.rstrip("/") + "/"
    disabled = []
    for swap_info in read_swaps():
        if swap_info.swap_type == "file" and swap_info.file.startswith(prefix):
            _swapoff(swap_info, device or mountpoint)
            disabled.append(swap_info.file)
    return disabled
