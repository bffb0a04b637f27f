"""Provision bare disks into bootable appliances."""

from .__version__ import __version__


__all__ = ["__version__"]
