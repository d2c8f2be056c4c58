"""External command execution for the provisioning pipeline.

Every disk utility (parted, sfdisk, mkfs.*, tune2fs, swapoff, umount,
syslinux, dd, ...) is run through run_command() so tests can patch a single
seam. Commands are issued and awaited one at a time; no timeouts are applied.
"""

from __future__ import annotations

import shutil
import subprocess
import time
from typing import Optional, Sequence, Type

from live_usb_installer.logging import EventLogger, LoggerFactory
from live_usb_installer.storage.exceptions import ProvisioningError


log = LoggerFactory.for_system()


def run_command(
    command: Sequence[str],
    check: bool = False,
    log_output: bool = True,
    log_command: bool = True,
    input_text: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run a command and capture its text output."""
    command = list(command)
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command, check=check, text=True, capture_output=True, input=input_text
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            log.bind(tags=["command-output"]).debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.bind(tags=["command-output"]).debug(f"stderr: {error.stderr.strip()}")
        raise
    output_log = log.bind(tags=["command-output"])
    if result.stdout and (log_output or result.returncode != 0):
        output_log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.trace(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def command_output(result: subprocess.CompletedProcess) -> str:
    """Combined stdout and stderr of a finished command."""
    parts = [
        (result.stdout or "").strip(),
        (result.stderr or "").strip(),
    ]
    return "\n".join(part for part in parts if part)


def run_checked(
    command: Sequence[str],
    error_cls: Type[ProvisioningError],
    message: str,
    device: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run a command; raise error_cls with the captured output on failure."""
    try:
        result = run_command(command)
    except OSError as error:
        raise error_cls(f"{message}: {error}", device) from error
    if result.returncode != 0:
        output = command_output(result)
        EventLogger.log_command_failed(log, command, result.returncode, output)
        raise error_cls(message, device, output)
    return result


def run_best_effort(command: Sequence[str]) -> bool:
    """Run a helper command if it is installed; never raise."""
    if not shutil.which(command[0]):
        log.debug(f"Skipping {command[0]}: command not found")
        return False
    try:
        result = run_command(command, log_command=False)
    except OSError as error:
        log.debug(f"Best-effort command failed ({command[0]}): {error}")
        return False
    return result.returncode == 0


def run_tolerated(command: Sequence[str]) -> Optional[subprocess.CompletedProcess]:
    """Run a command whose failure the caller tolerates.

    Returns:
        The finished command, or None if it could not be started
    """
    try:
        return run_command(command)
    except OSError as error:
        log.warning(f"Could not run {command[0]}: {error}")
        return None


def sleep(seconds: float) -> None:
    """Settling pause; the only place the pipeline sleeps."""
    if seconds > 0:
        time.sleep(seconds)


def sync() -> None:
    run_command(["sync"], log_command=False)
