"""Wait for the kernel and udev to catch up with partition table changes.

After repartitioning or formatting, device nodes and filesystem signatures
appear asynchronously. Instead of sleeping for a fixed time we poll for the
expected nodes with exponential backoff, bounded by a timeout, and then let
udev finish processing its event queue.
"""

from __future__ import annotations

import os
import time
from typing import Iterable, Optional, Type

from live_usb_installer.config import settings
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage import commands
from live_usb_installer.storage.exceptions import ProvisioningError


MAX_POLL_INTERVAL_SECONDS = 2.0

log = LoggerFactory.for_partition()


def udev_settle() -> None:
    commands.run_best_effort(["udevadm", "settle", "--timeout=10"])


def rescan_device(device_node: str) -> None:
    """Ask the kernel to re-read the partition table of a device."""
    result = commands.run_tolerated(["partprobe", device_node])
    if result is not None and result.returncode != 0:
        # not fatal: the node poll below decides
        log.warning(
            f"partprobe {device_node} failed: {commands.command_output(result)}"
        )


def wait_for_partition_nodes(
    nodes: Iterable[str],
    timeout: Optional[float] = None,
    initial_delay: Optional[float] = None,
    device: Optional[str] = None,
    error_cls: Type[ProvisioningError] = ProvisioningError,
) -> None:
    """Block until every node exists.

    Raises:
        error_cls: If a node is still missing after the timeout
    """
    expected = list(nodes)
    if timeout is None:
        timeout = settings.get_float(
            "partition_timeout_seconds", settings.DEFAULT_PARTITION_TIMEOUT_SECONDS
        )
    delay = initial_delay
    if delay is None:
        delay = settings.get_float(
            "poll_interval_seconds", settings.DEFAULT_POLL_INTERVAL_SECONDS
        )

    deadline = time.monotonic() + timeout
    while True:
        missing = [node for node in expected if not os.path.exists(node)]
        if not missing:
            log.debug(f"Partition nodes ready: {', '.join(expected)}")
            udev_settle()
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            log.error(f"Partition nodes missing after {timeout}s: {', '.join(missing)}")
            raise error_cls(
                f"Partition nodes did not appear: {', '.join(missing)}", device
            )
        log.trace(f"Waiting for partition node(s) {', '.join(missing)}")
        commands.sleep(min(delay, remaining))
        delay = min(delay * 2, MAX_POLL_INTERVAL_SECONDS)
