"""Custom exceptions for provisioning operations.

This module defines a hierarchy of exceptions for the provisioning pipeline.
Every fatal condition surfaces as a ProvisioningError carrying a readable
message, the offending device or partition node, and the captured output of
the command that failed.

Exception Hierarchy:
    StorageError (base)
        ├── DeviceBusyError
        └── ProvisioningError
            ├── UnsupportedPartitionStateError
            ├── DeviceTooSmallError
            ├── InvalidExchangeSizeError
            ├── RepartitionError
            ├── FormatOperationError
            ├── MountError
            │   ├── UnmountFailedError
            │   └── MountPathUnavailableError
            ├── SwapoffError
            └── BootSectorError

Usage:
    from live_usb_installer.storage.exceptions import RepartitionError

    if result.returncode != 0:
        raise RepartitionError("Repartitioning failed", "/dev/sdb", result.stderr)
"""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all storage operations."""



class DeviceBusyError(StorageError):
    """Device is already being provisioned by another pipeline."""

    def __init__(self, device_name: str, reason: str = ""):
        self.device_name = device_name
        self.reason = reason
        msg = f"Device {device_name} is busy"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ProvisioningError(StorageError):
    """Fatal provisioning failure.

    The device is left in whatever state the failed step produced; there is
    no rollback.
    """

    def __init__(self, message: str, device: str | None = None, output: str = ""):
        self.device = device
        self.output = output or ""
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.output:
            return f"{message}\n{self.output.strip()}"
        return message


class UnsupportedPartitionStateError(ProvisioningError):
    """A layout state with no partition mapping reached the partitioner."""

    def __init__(self, state, device: str | None = None):
        self.state = state
        super().__init__(f'unsupported partition state "{state}"', device)


class DeviceTooSmallError(ProvisioningError):
    """Device cannot hold the system image."""

    def __init__(self, device: str, size_bytes: int, required_bytes: int):
        self.size_bytes = size_bytes
        self.required_bytes = required_bytes
        super().__init__(
            f"Device {device} ({size_bytes} bytes) is too small "
            f"for the system ({required_bytes} bytes)",
            device,
        )


class InvalidExchangeSizeError(ProvisioningError):
    """Requested exchange partition does not fit next to the system."""

    def __init__(self, device: str, exchange_mb: int, available_mb: int):
        self.exchange_mb = exchange_mb
        self.available_mb = available_mb
        super().__init__(
            f"Exchange partition of {exchange_mb} MiB does not fit on {device} "
            f"(0 to {available_mb} MiB available)",
            device,
        )


class RepartitionError(ProvisioningError):
    """Creating the partition table or the partitions failed."""



class FormatOperationError(ProvisioningError):
    """Creating or tuning a filesystem failed."""



class MountError(ProvisioningError):
    """Base exception for mount-related errors."""



class UnmountFailedError(MountError):
    """Failed to unmount a device node or mount point."""

    def __init__(self, target: str, output: str = ""):
        self.target = target
        super().__init__(f"Failed to unmount {target}", target, output)


class MountPathUnavailableError(MountError):
    """Mounting succeeded on paper but no mount path came back."""

    def __init__(self, device: str, role: str):
        self.role = role
        super().__init__(f"could not mount {role} partition {device}", device)


class SwapoffError(ProvisioningError):
    """Disabling an active swap area failed."""



class BootSectorError(ProvisioningError):
    """Installing the bootloader or writing the MBR failed."""
