"""Provision USB flash drives, SD cards and disks with a bootable live system."""

from .__version__ import __version__


__all__ = ["__version__"]
