"""Bootloader configuration edits on a mounted boot partition.

isolinux -> syslinux:
    Images booted from optical media carry an isolinux directory. A USB
    device needs the same files as syslinux, so the directory and its main
    config file are renamed, references to the old name are rewritten and
    the checksum manifest is brought in line with the renamed tree.

Data partition mode:
    The kernel command line in syslinux and grub configs selects whether
    the persistence partition is used read-write, read-only or not at all.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable

from live_usb_installer.domain.models import DataPartitionMode
from live_usb_installer.logging import LoggerFactory
from live_usb_installer.storage.commands import sync
from live_usb_installer.storage.exceptions import ProvisioningError


log = LoggerFactory.for_boot()

ISOLINUX_PATTERN = re.compile("isolinux")

# config files in the syslinux directory that refer to isolinux
SYSLINUX_CONFIG_FILES = ("exithelp.cfg", "stdmenu.cfg", "syslinux.cfg")

# manifest entries of files that no longer exist after the rename
STALE_MANIFEST_ENTRIES = ("xmlboot.config", "grub.cfg")

PERSISTENCE_OPTIONS = ("persistence", "persistence-read-only")

# lines carrying kernel options
SYSLINUX_KERNEL_LINE = re.compile(r"^(\s*)(append)(\s+.*)?$", re.IGNORECASE)
GRUB_KERNEL_LINE = re.compile(r"^(\s*)(linux)(\s+.*)?$")


def move_file(source: Path, destination: Path) -> None:
    """Rename a file or directory.

    Raises:
        ProvisioningError: If the source is missing or cannot be renamed
    """
    if not source.exists():
        raise ProvisioningError(f"File {source} does not exist", str(source))
    try:
        os.rename(source, destination)
    except OSError as error:
        raise ProvisioningError(
            f"Could not move {source} to {destination}: {error}", str(source)
        ) from error


def read_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8", errors="surrogateescape").splitlines()


def write_lines(path: Path, lines: Iterable[str]) -> None:
    with open(path, "w", encoding="utf-8", errors="surrogateescape") as file:
        for line in lines:
            file.write(line + "\n")
        file.flush()


def replace_text(path: Path, pattern: re.Pattern, replacement: str) -> bool:
    """Replace a pattern in every line of a file.

    The file is only rewritten if a line changed.

    Returns:
        True if the file was changed
    """
    if not path.exists():
        log.warning(f'file "{path}" does not exist!')
        return False
    log.info(f'replacing pattern "{pattern.pattern}" with "{replacement}" in file "{path}"')
    lines = read_lines(path)
    changed = False
    for index, line in enumerate(lines):
        if pattern.search(line):
            log.trace(f'line "{line}" matches')
            lines[index] = pattern.sub(replacement, line)
            changed = True
    if changed:
        write_lines(path, lines)
    return changed


def isolinux_to_syslinux(mount_point: str) -> None:
    """Convert an isolinux boot tree into a syslinux boot tree."""
    root = Path(mount_point)
    isolinux_path = root / "isolinux"
    if not isolinux_path.exists():
        # boot device is probably a hard disk
        log.info("isolinux directory does not exist -> no renaming")
        return

    log.info("replacing isolinux with syslinux")
    syslinux_path = root / "syslinux"
    move_file(isolinux_path, syslinux_path)
    move_file(syslinux_path / "isolinux.cfg", syslinux_path / "syslinux.cfg")

    for name in SYSLINUX_CONFIG_FILES:
        replace_text(syslinux_path / name, ISOLINUX_PATTERN, "syslinux")

    boot_catalog = syslinux_path / "boot.cat"
    try:
        boot_catalog.unlink()
    except OSError as error:
        log.warning(f"Could not delete {boot_catalog}: {error}")

    md5sum_path = root / "md5sum.txt"
    if not md5sum_path.exists():
        log.warning(f'file "{md5sum_path}" does not exist!')
        return
    replace_text(md5sum_path, ISOLINUX_PATTERN, "syslinux")
    lines = [
        line
        for line in read_lines(md5sum_path)
        if not any(entry in line for entry in STALE_MANIFEST_ENTRIES)
    ]
    write_lines(md5sum_path, lines)
    sync()


def boot_config_files(image_path: str) -> list[Path]:
    """syslinux, isolinux and grub config files below an image path."""
    root = Path(image_path)
    files: list[Path] = []
    for directory in ("syslinux", "isolinux", "boot/syslinux", "boot/isolinux"):
        files.extend(sorted((root / directory).glob("*.cfg")))
    for directory in ("boot/grub", "EFI/boot", "efi/boot"):
        files.extend(sorted((root / directory).glob("grub*.cfg")))
    return [path for path in files if path.is_file()]


def kernel_line_pattern(path: Path) -> re.Pattern:
    if path.name.startswith("grub"):
        return GRUB_KERNEL_LINE
    return SYSLINUX_KERNEL_LINE


def _rewrite_kernel_line(line: str, pattern: re.Pattern, mode: DataPartitionMode) -> str:
    match = pattern.match(line)
    if match is None:
        return line
    indent, keyword, rest = match.group(1), match.group(2), match.group(3) or ""
    options = [option for option in rest.split() if option not in PERSISTENCE_OPTIONS]
    options.extend(mode.boot_options)
    return f"{indent}{keyword} {' '.join(options)}".rstrip()


def get_data_partition_mode(image_path: str) -> DataPartitionMode:
    """Data partition mode configured in the first kernel line found."""
    for path in boot_config_files(image_path):
        pattern = kernel_line_pattern(path)
        for line in read_lines(path):
            match = pattern.match(line)
            if match is not None:
                return DataPartitionMode.from_boot_options((match.group(3) or "").split())
    return DataPartitionMode.NOT_USED


def write_data_partition_mode(mode: DataPartitionMode, image_path: str) -> list[Path]:
    """Rewrite the persistence options of every kernel line.

    Returns:
        The config files that were changed
    """
    changed_files = []
    for path in boot_config_files(image_path):
        pattern = kernel_line_pattern(path)
        lines = read_lines(path)
        rewritten = [_rewrite_kernel_line(line, pattern, mode) for line in lines]
        if rewritten != lines:
            write_lines(path, rewritten)
            changed_files.append(path)
    log.info(
        f"data partition mode {mode.value} written to "
        f"{len(changed_files)} file(s) below {image_path}"
    )
    return changed_files


def set_data_partition_mode(
    source_mode: DataPartitionMode, mode: DataPartitionMode, image_path: str
) -> bool:
    """Apply the destination mode if it differs from the source mode.

    Returns:
        True if the configuration was rewritten
    """
    log.info(f"data partition mode of installation source: {source_mode.value}")
    log.info(f"selected data partition mode for destination: {mode.value}")
    if source_mode is mode:
        return False
    write_data_partition_mode(mode, image_path)
    return True
