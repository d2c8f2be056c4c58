"""Domain models for provisioning storage devices.

This package contains type-safe domain objects for devices, partitions and
sizing values used across the provisioning pipeline.
"""

from __future__ import annotations

from .models import (
    BOOT_PARTITION_SIZE_MB,
    MEGA,
    MINIMUM_PARTITION_SIZE,
    DataPartitionMode,
    DeviceType,
    ExchangeFileSystem,
    InstallOptions,
    MountInfo,
    Partition,
    PartitionRole,
    PartitionSizes,
    PartitionState,
    ProvisioningConfig,
    RepartitionStrategy,
    StorageDevice,
    belongs_to_device,
    partition_name,
)


__all__ = [
    "BOOT_PARTITION_SIZE_MB",
    "MEGA",
    "MINIMUM_PARTITION_SIZE",
    "DataPartitionMode",
    "DeviceType",
    "ExchangeFileSystem",
    "InstallOptions",
    "MountInfo",
    "Partition",
    "PartitionRole",
    "PartitionSizes",
    "PartitionState",
    "ProvisioningConfig",
    "RepartitionStrategy",
    "StorageDevice",
    "belongs_to_device",
    "partition_name",
]
