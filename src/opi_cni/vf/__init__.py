"""VF management backends."""

from .base import VFManager, lookup_mac_for_pci  # noqa: F401
from .sriov import SriovManager  # noqa: F401

__all__ = ["SriovManager", "VFManager", "lookup_mac_for_pci"]
