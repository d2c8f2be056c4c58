"""Partition planning: layout state, partition sizes and partition order.

Everything here is pure. Sizes and boundaries are computed before any
destructive action so the partitioner can issue one complete parted command.

Layout Scenarios:
    The partition order depends on the layout state, on whether the device is
    removable and on whether exchange and persistence partitions are created.
    LAYOUT_TABLE maps every reachable combination to its scenario; adding a
    scenario is a table edit.

    ONLY_SYSTEM                       boot, system
    PERSISTENCE                       boot, persistence, system
    EXCHANGE, no exchange partition   boot, persistence, system
    EXCHANGE, removable device        exchange, boot, [persistence], system
    EXCHANGE, fixed device            boot, exchange, [persistence], system

    Some operating systems only show the first partition of removable media,
    so the exchange partition comes first there. On fixed disks firmware
    expects the boot partition first.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from live_usb_installer.domain.models import (
    BOOT_PARTITION_SIZE_MB,
    MEGA,
    MINIMUM_PARTITION_SIZE,
    ExchangeFileSystem,
    PartitionRole,
    PartitionSizes,
    PartitionState,
    ProvisioningConfig,
    RepartitionStrategy,
    StorageDevice,
)
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage.exceptions import (
    InvalidExchangeSizeError,
    UnsupportedPartitionStateError,
)


log = LoggerFactory.for_partition()

BOOT = PartitionRole.BOOT
EXCHANGE = PartitionRole.EXCHANGE
PERSISTENCE = PartitionRole.PERSISTENCE
SYSTEM = PartitionRole.SYSTEM

# MBR partition type ids
BOOT_PARTITION_TYPE_ID = "ef"  # EFI, although formatted FAT
LINUX_PARTITION_TYPE_ID = "83"


def classify(device_size: int, system_size: int) -> PartitionState:
    """Classify a device by the room it has left next to the system."""
    if device_size > system_size + 2 * MINIMUM_PARTITION_SIZE:
        return PartitionState.EXCHANGE
    if device_size > system_size + MINIMUM_PARTITION_SIZE:
        return PartitionState.PERSISTENCE
    if device_size > system_size:
        return PartitionState.ONLY_SYSTEM
    return PartitionState.TOO_SMALL


def overhead_mb(device_size: int, config: ProvisioningConfig) -> int:
    """Whole MiB left after the boot and system partitions."""
    overhead = device_size - BOOT_PARTITION_SIZE_MB * MEGA - config.system_size_enlarged
    return overhead // MEGA


def _partition_sizes(
    device: StorageDevice, config: ProvisioningConfig, exchange_mb: int
) -> Optional[PartitionSizes]:
    state = classify(device.size_bytes, config.system_size_enlarged)
    overhead = overhead_mb(device.size_bytes, config)
    if exchange_mb < 0:
        raise InvalidExchangeSizeError(device.device_node, exchange_mb, max(overhead, 0))
    if state is PartitionState.TOO_SMALL:
        log.warning(f"{device.name} is too small for the system")
        return None
    if state is PartitionState.ONLY_SYSTEM:
        return PartitionSizes(exchange_mb=0, persistence_mb=0)
    if state is PartitionState.PERSISTENCE:
        return PartitionSizes(exchange_mb=0, persistence_mb=overhead)
    if exchange_mb > overhead:
        raise InvalidExchangeSizeError(device.device_node, exchange_mb, overhead)
    log.info(f"exchangeMB = {exchange_mb}")
    return PartitionSizes(exchange_mb=exchange_mb, persistence_mb=overhead - exchange_mb)


def size_for_install(
    device: StorageDevice, exchange_mb: int, config: ProvisioningConfig
) -> Optional[PartitionSizes]:
    """Partition sizes for a fresh install.

    Returns:
        The sizes, or None if the device is too small

    Raises:
        InvalidExchangeSizeError: If exchange_mb is negative or larger than
            the room left next to boot and system
    """
    return _partition_sizes(device, config, exchange_mb)


def size_for_upgrade(
    device: StorageDevice,
    strategy: RepartitionStrategy,
    resized_exchange_mb: int,
    config: ProvisioningConfig,
) -> Optional[PartitionSizes]:
    """Partition sizes for an upgrade.

    KEEP keeps the size of the existing exchange partition (0 without one),
    RESIZE uses resized_exchange_mb and REMOVE drops the exchange partition.
    """
    exchange_mb = 0
    if strategy is RepartitionStrategy.KEEP:
        exchange_partition = device.get_exchange_partition(config.boot_label)
        if exchange_partition is not None:
            log.info(f"exchangePartition: {exchange_partition.device_and_number}")
            exchange_mb = exchange_partition.size_bytes // MEGA
    elif strategy is RepartitionStrategy.RESIZE:
        exchange_mb = resized_exchange_mb
    return _partition_sizes(device, config, exchange_mb)


def get_repartition_strategy(keep: bool, resize: bool) -> RepartitionStrategy:
    if keep:
        return RepartitionStrategy.KEEP
    if resize:
        return RepartitionStrategy.RESIZE
    return RepartitionStrategy.REMOVE


class LayoutScenario(Enum):
    """Closed set of partition orders; the value is the role order."""

    BOOT_SYSTEM = (BOOT, SYSTEM)
    BOOT_PERSISTENCE_SYSTEM = (BOOT, PERSISTENCE, SYSTEM)
    EXCHANGE_BOOT_SYSTEM = (EXCHANGE, BOOT, SYSTEM)
    EXCHANGE_BOOT_PERSISTENCE_SYSTEM = (EXCHANGE, BOOT, PERSISTENCE, SYSTEM)
    BOOT_EXCHANGE_SYSTEM = (BOOT, EXCHANGE, SYSTEM)
    BOOT_EXCHANGE_PERSISTENCE_SYSTEM = (BOOT, EXCHANGE, PERSISTENCE, SYSTEM)

    @property
    def roles(self) -> tuple[PartitionRole, ...]:
        return self.value


# (state, removable, has exchange, has persistence) -> scenario
LAYOUT_TABLE: dict[tuple[PartitionState, bool, bool, bool], LayoutScenario] = {
    (PartitionState.ONLY_SYSTEM, True, False, False): LayoutScenario.BOOT_SYSTEM,
    (PartitionState.ONLY_SYSTEM, False, False, False): LayoutScenario.BOOT_SYSTEM,
    (PartitionState.PERSISTENCE, True, False, True): LayoutScenario.BOOT_PERSISTENCE_SYSTEM,
    (PartitionState.PERSISTENCE, False, False, True): LayoutScenario.BOOT_PERSISTENCE_SYSTEM,
    (PartitionState.EXCHANGE, True, False, True): LayoutScenario.BOOT_PERSISTENCE_SYSTEM,
    (PartitionState.EXCHANGE, False, False, True): LayoutScenario.BOOT_PERSISTENCE_SYSTEM,
    (PartitionState.EXCHANGE, True, True, False): LayoutScenario.EXCHANGE_BOOT_SYSTEM,
    (PartitionState.EXCHANGE, True, True, True): LayoutScenario.EXCHANGE_BOOT_PERSISTENCE_SYSTEM,
    (PartitionState.EXCHANGE, False, True, False): LayoutScenario.BOOT_EXCHANGE_SYSTEM,
    (PartitionState.EXCHANGE, False, True, True): LayoutScenario.BOOT_EXCHANGE_PERSISTENCE_SYSTEM,
}


@dataclass(frozen=True)
class PartitionLayout:
    """Ordered partitions for one device, with their sizes."""

    state: PartitionState
    scenario: LayoutScenario
    sizes: PartitionSizes

    @property
    def roles(self) -> tuple[PartitionRole, ...]:
        return self.scenario.roles

    def number(self, role: PartitionRole) -> Optional[int]:
        """1-based partition number of a role, None if not in the layout."""
        if role not in self.roles:
            return None
        return self.roles.index(role) + 1

    def size_mb(self, role: PartitionRole) -> Optional[int]:
        """Planned size in MiB; None for the system partition (the rest)."""
        if role is BOOT:
            return BOOT_PARTITION_SIZE_MB
        if role is EXCHANGE:
            return self.sizes.exchange_mb
        if role is PERSISTENCE:
            return self.sizes.persistence_mb
        return None

    def boundaries(self) -> list[tuple[str, str]]:
        """(start, end) of each partition in order.

        The first partition starts at 0% and the last ends at 100%; all
        other boundaries are cumulative MiB offsets.
        """
        result = []
        start = "0%"
        offset = 0
        for index, role in enumerate(self.roles):
            if index == len(self.roles) - 1:
                end = "100%"
            else:
                offset += self.size_mb(role) or 0
                end = f"{offset}MiB"
            result.append((start, end))
            start = end
        return result

    def parted_arguments(self) -> list[str]:
        """mkpart and flag arguments for parted -s -a optimal <device> ..."""
        arguments: list[str] = []
        for start, end in self.boundaries():
            arguments.extend(["mkpart", "primary", start, end])
        arguments.extend(["set", str(self.number(BOOT)), "boot", "on"])
        for number, role in enumerate(self.roles, start=1):
            if role in (BOOT, EXCHANGE):
                arguments.extend(["set", str(number), "lba", "on"])
        return arguments

    def type_ids(self, exchange_filesystem: ExchangeFileSystem) -> list[tuple[int, str]]:
        """(partition number, MBR type id) fixups; parted's ids are unreliable."""
        ids = []
        for number, role in enumerate(self.roles, start=1):
            if role is BOOT:
                ids.append((number, BOOT_PARTITION_TYPE_ID))
            elif role is EXCHANGE:
                ids.append((number, exchange_filesystem.partition_type_id))
            else:
                ids.append((number, LINUX_PARTITION_TYPE_ID))
        return ids


def plan_layout(
    state: PartitionState, removable: bool, sizes: PartitionSizes
) -> PartitionLayout:
    """Select the layout scenario for a device.

    Raises:
        UnsupportedPartitionStateError: For TOO_SMALL or an unreachable
            size combination
    """
    key = (state, removable, sizes.exchange_mb > 0, sizes.persistence_mb > 0)
    scenario = LAYOUT_TABLE.get(key)
    if scenario is None:
        log.error(f"unsupported partition state {key}")
        raise UnsupportedPartitionStateError(state)
    return PartitionLayout(state=state, scenario=scenario, sizes=sizes)
