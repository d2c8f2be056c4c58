"""Domain model for provisioning storage devices with a live system.

Type-safe objects for the devices, partitions and sizing values that flow
through the provisioning pipeline, instead of raw lsblk dicts.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


MEGA = 1024 * 1024

# Minimal size of a data (exchange or persistence) partition
MINIMUM_PARTITION_SIZE = 200 * MEGA

# Size of the boot partition in MiB
BOOT_PARTITION_SIZE_MB = 100

# Scale factor applied to the system image size for the system partition
SYSTEM_SIZE_FACTOR = 1.1


# ==============================================================================
# Sizing Domain
# ==============================================================================


class PartitionState(Enum):
    """How much room a device has relative to the system image.

    Values are ordered by required headroom.
    """

    TOO_SMALL = 0  # cannot hold the system at all
    ONLY_SYSTEM = 1  # boot + system
    PERSISTENCE = 2  # boot + persistence + system
    EXCHANGE = 3  # boot + optional exchange + optional persistence + system

    def __lt__(self, other: PartitionState) -> bool:
        if not isinstance(other, PartitionState):
            return NotImplemented
        return self.value < other.value


class RepartitionStrategy(Enum):
    """What to do with the exchange partition when upgrading."""

    KEEP = "keep"
    RESIZE = "resize"
    REMOVE = "remove"


@dataclass(frozen=True)
class PartitionSizes:
    """Exchange and persistence partition sizes in whole MiB."""

    exchange_mb: int
    persistence_mb: int


@dataclass(frozen=True)
class ProvisioningConfig:
    """Sizing and labels derived once from the installation source.

    Passed to every pipeline component instead of process-wide globals.
    """

    system_size: int  # bytes used by the system image
    system_size_enlarged: int  # bytes reserved for the system partition
    system_partition_label: str
    boot_label: str = "boot"
    persistence_label: str = "persistence"

    @classmethod
    def from_system_size(
        cls,
        system_size: int,
        system_partition_label: str,
        **labels: str,
    ) -> ProvisioningConfig:
        enlarged = int(math.floor(system_size * SYSTEM_SIZE_FACTOR))
        return cls(
            system_size=system_size,
            system_size_enlarged=enlarged,
            system_partition_label=system_partition_label,
            **labels,
        )


# ==============================================================================
# Device Domain
# ==============================================================================


class DeviceType(Enum):
    """Media type of a storage device."""

    USB_FLASH_DRIVE = "usb"
    SD_MEMORY_CARD = "sd"
    HARDDISK = "disk"


class ExchangeFileSystem(Enum):
    """Filesystems offered for the exchange partition."""

    FAT32 = "fat32"
    EXFAT = "exfat"
    NTFS = "ntfs"

    @classmethod
    def from_name(cls, name: str) -> ExchangeFileSystem:
        """Parse a user-facing name ("FAT32", "vfat", "exFAT", "NTFS")."""
        normalized = (name or "").strip().lower()
        if normalized == "vfat":
            normalized = "fat32"
        try:
            return cls(normalized)
        except ValueError as error:
            raise ValueError(f"Unsupported exchange filesystem: {name}") from error

    @property
    def partition_type_id(self) -> str:
        """MBR type id: W95 FAT32 (LBA) or HPFS/NTFS/exFAT."""
        return "c" if self is ExchangeFileSystem.FAT32 else "7"


class PartitionRole(Enum):
    """Role of a partition in the finished layout."""

    BOOT = "boot"
    EXCHANGE = "exchange"
    PERSISTENCE = "persistence"
    SYSTEM = "system"


class DataPartitionMode(Enum):
    """How the persistence area is exposed to the running system."""

    READ_WRITE = "read-write"
    READ_ONLY = "read-only"
    NOT_USED = "not-used"

    @property
    def boot_options(self) -> tuple[str, ...]:
        """Kernel command line options selecting this mode."""
        if self is DataPartitionMode.READ_WRITE:
            return ("persistence",)
        if self is DataPartitionMode.READ_ONLY:
            return ("persistence", "persistence-read-only")
        return ()

    @classmethod
    def from_boot_options(cls, options: list[str]) -> DataPartitionMode:
        if "persistence" not in options:
            return cls.NOT_USED
        if "persistence-read-only" in options:
            return cls.READ_ONLY
        return cls.READ_WRITE


@dataclass(frozen=True)
class MountInfo:
    """Result of mounting a partition."""

    mount_path: str | None
    already_mounted: bool  # mounted before we touched it


@dataclass(frozen=True)
class Partition:
    """A partition on a storage device.

    Mount state is read from the live mount table, never cached here.
    """

    device: str  # parent device, e.g. "sdb" or "mmcblk0"
    number: int
    size_bytes: int = 0
    label: str | None = None
    fstype: str | None = None

    @property
    def device_and_number(self) -> str:
        """Partition name, e.g. "sdb1" or "mmcblk0p1"."""
        return partition_name(self.device, self.number)

    @property
    def device_node(self) -> str:
        return f"/dev/{self.device_and_number}"

    @classmethod
    def from_device_and_number(cls, device_and_number: str, **kwargs: Any) -> Partition:
        """Build a handle from a node name such as "sdb2" or "mmcblk0p3"."""
        name = device_and_number.rsplit("/", 1)[-1]
        index = len(name)
        while index > 0 and name[index - 1].isdigit():
            index -= 1
        if index == len(name):
            raise ValueError(f"No partition number in {device_and_number}")
        device = name[:index]
        number = int(name[index:])
        if device.endswith("p") and device[:-1] and device[-2].isdigit():
            device = device[:-1]
        return cls(device=device, number=number, **kwargs)


def partition_name(device: str, number: int) -> str:
    """Kernel naming: "sdb" + 1 -> "sdb1", "mmcblk0" + 1 -> "mmcblk0p1"."""
    suffix = "p" if device and device[-1].isdigit() else ""
    return f"{device}{suffix}{number}"


def belongs_to_device(node: str, device_node: str) -> bool:
    """True if node is device_node itself or one of its partitions.

    A plain prefix test would match /dev/sdb against /dev/sdba1, so the
    remainder must be a partition suffix ("1", "p1").
    """
    if node == device_node:
        return True
    return re.fullmatch(re.escape(device_node) + r"p?\d+", node) is not None


@dataclass(frozen=True)
class StorageDevice:
    """A block device the live system is installed on.

    Provided by device discovery; the pipeline only reads it.
    """

    name: str  # e.g., "sdb", "mmcblk0"
    size_bytes: int
    removable: bool = True
    device_type: DeviceType = DeviceType.USB_FLASH_DRIVE
    partitions: tuple[Partition, ...] = field(default_factory=tuple)
    vendor: str | None = None
    model: str | None = None

    @property
    def device_node(self) -> str:
        """Device node path (e.g., /dev/sdb)."""
        return f"/dev/{self.name}"

    def partition_node(self, number: int) -> str:
        return f"/dev/{partition_name(self.name, number)}"

    def get_exchange_partition(self, boot_label: str = "boot") -> Partition | None:
        """The existing exchange partition, if any.

        That is the first FAT, exFAT or NTFS partition that is not the
        boot partition.
        """
        for partition in self.partitions:
            if (partition.fstype or "").lower() not in ("vfat", "exfat", "ntfs"):
                continue
            if (partition.label or "") == boot_label:
                continue
            return partition
        return None

    def format_label(self) -> str:
        """Human-readable label, e.g. "sdb Kingston DataTraveler (7.5GB)"."""
        size_str = f"{self.size_bytes / (1024**3):.1f}GB"
        parts = [part.strip() for part in (self.vendor, self.model) if part]
        if parts:
            return f"{self.name} {' '.join(parts)} ({size_str})"
        return f"{self.name} {size_str}"

    @classmethod
    def from_lsblk_dict(cls, device: dict[str, Any]) -> StorageDevice:
        """Convert an lsblk dict (lsblk -J -b) to a StorageDevice.

        Raises:
            KeyError: If the name key is missing
            ValueError: If a size cannot be converted to int
        """
        name = device["name"]
        size_bytes = int(device.get("size") or 0)
        removable = str(device.get("rm")) in ("1", "True", "true") or (
            device.get("tran") == "usb"
        )
        if name.startswith("mmcblk"):
            device_type = DeviceType.SD_MEMORY_CARD
        elif device.get("tran") == "usb":
            device_type = DeviceType.USB_FLASH_DRIVE
        else:
            device_type = DeviceType.HARDDISK

        partitions = []
        for child in device.get("children", []) or []:
            if child.get("type", "part") != "part":
                continue
            partition = Partition.from_device_and_number(
                child["name"],
                size_bytes=int(child.get("size") or 0),
                label=child.get("label"),
                fstype=child.get("fstype"),
            )
            partitions.append(partition)

        vendor = device.get("vendor")
        model = device.get("model")
        return cls(
            name=name,
            size_bytes=size_bytes,
            removable=removable,
            device_type=device_type,
            partitions=tuple(partitions),
            vendor=vendor.strip() if vendor else None,
            model=model.strip() if model else None,
        )


# ==============================================================================
# Install Options Domain
# ==============================================================================


@dataclass(frozen=True)
class InstallOptions:
    """Operator choices for one install or upgrade run."""

    exchange_filesystem: ExchangeFileSystem = ExchangeFileSystem.FAT32
    data_partition_filesystem: str = "ext4"
    exchange_label: str = "Exchange"
    copy_exchange: bool = False
    copy_persistence: bool = False
    data_partition_mode: DataPartitionMode = DataPartitionMode.READ_WRITE
    upgrading: bool = False
