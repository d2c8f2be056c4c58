"""Recursive copy jobs from an installation source to mounted partitions.

A CopyJob copies one or more sources into one or more destination
directories. A Source is a base directory plus a regular expression that
selects paths relative to that base directory; a directory that matches
pulls in its whole subtree.
"""

from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

from live_usb_installer.logging import LoggerFactory


log = LoggerFactory.for_copy()

# Called with (destination, progress ratio 0.0 - 1.0)
ProgressCallback = Callable[[str, float], None]


@dataclass(frozen=True)
class Source:
    """Base directory and include pattern for relative paths."""

    base_directory: Path
    include_pattern: str = ".*"

    def iter_paths(self) -> Iterator[Path]:
        """Selected paths relative to the base directory, parents first."""
        pattern = re.compile(self.include_pattern)
        for root, dirs, files in os.walk(self.base_directory):
            dirs.sort()
            root_path = Path(root)
            for name in dirs + sorted(files):
                path = root_path / name
                relative = path.relative_to(self.base_directory)
                if _selected(relative, pattern):
                    yield relative


def _selected(relative: Path, pattern: re.Pattern) -> bool:
    # a path is selected if it or one of its parent directories matches
    candidate = relative
    while str(candidate) != ".":
        if pattern.fullmatch(candidate.as_posix()):
            return True
        candidate = candidate.parent
    return False


@dataclass(frozen=True)
class CopyJob:
    sources: tuple[Source, ...]
    destinations: tuple[str, ...]


@dataclass
class CopyJobsInfo:
    """Destination paths and copy jobs of one provisioning run."""

    destination_boot_path: str
    destination_system_path: str
    boot_copy_job: CopyJob
    system_copy_job: CopyJob
    boot_files_copy_job: Optional[CopyJob] = None
    exchange_copy_job: Optional[CopyJob] = None
    destination_exchange_path: Optional[str] = None


def _copy_entry(src: Path, dest: Path) -> int:
    """Copy one file, symlink or directory node; return copied bytes."""
    if src.is_symlink():
        if dest.is_symlink() or dest.exists():
            dest.unlink()
        os.symlink(os.readlink(src), dest)
        return 0
    if src.is_dir():
        dest.mkdir(parents=True, exist_ok=True)
        shutil.copystat(src, dest)
        return 0
    shutil.copy2(src, dest)
    return src.stat().st_size


class FileCopier:
    """Executes copy jobs one after another, preserving metadata and symlinks."""

    def __init__(self, progress_callback: Optional[ProgressCallback] = None):
        self.progress_callback = progress_callback

    def copy(self, *jobs: Optional[CopyJob]) -> None:
        """Run all given jobs as one batch; None entries are skipped.

        Raises:
            OSError: If a file cannot be copied
        """
        selected = [job for job in jobs if job is not None]
        entries = []
        total_size = 0
        for job in selected:
            for source in job.sources:
                for relative in source.iter_paths():
                    path = Path(source.base_directory) / relative
                    if path.is_file() and not path.is_symlink():
                        total_size += path.stat().st_size
                    for destination in job.destinations:
                        entries.append((path, Path(destination) / relative))

        log.info(
            f"Copying {len(entries)} entries ({total_size} bytes) "
            f"in {len(selected)} job(s)"
        )
        bytes_copied = 0
        for src, dest in entries:
            dest.parent.mkdir(parents=True, exist_ok=True)
            try:
                bytes_copied += _copy_entry(src, dest)
            except OSError as e:
                log.error(f"Failed to copy {src} to {dest}: {e}")
                raise
            if self.progress_callback and total_size > 0:
                self.progress_callback(str(dest), bytes_copied / total_size)
        log.debug(f"Copied {bytes_copied} bytes")
