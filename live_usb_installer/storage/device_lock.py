"""Per-device operation lock for provisioning pipelines.

Two devices may be provisioned concurrently, each in its own pipeline, but
never the same device twice at once.

Usage:
    from live_usb_installer.storage.device_lock import device_operation

    with device_operation("sdb"):
        # repartition, format, copy
        ...
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Generator

from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage.exceptions import DeviceBusyError


log = LoggerFactory.for_system()

# Lock for thread-safe access to the set of active devices
_lock = threading.Lock()

_active_devices: set[str] = set()


@contextmanager
def device_operation(device_name: str) -> Generator[None, None, None]:
    """Context manager that claims a device for one pipeline.

    Args:
        device_name: Name of the device being provisioned (e.g., "sdb")

    Raises:
        DeviceBusyError: If another pipeline is already working on the device
    """
    with _lock:
        if device_name in _active_devices:
            raise DeviceBusyError(device_name, "another provisioning run is active")
        _active_devices.add(device_name)
        log.debug(f"Device operation started on {device_name}")

    try:
        yield
    finally:
        with _lock:
            _active_devices.discard(device_name)
            log.debug(f"Device operation completed on {device_name}")


def is_operation_active(device_name: str | None = None) -> bool:
    """Check if a device (or any device) is being provisioned."""
    with _lock:
        if device_name is None:
            return bool(_active_devices)
        return device_name in _active_devices


def get_active_devices() -> list[str]:
    with _lock:
        return sorted(_active_devices)
