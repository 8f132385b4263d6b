"""Abstract interface for VF hardware management."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Tuple

from ..config import NetConf
from ..errors import MappingError
from ..netns import NetNamespace

LOG = logging.getLogger(__name__)


class VFManager(ABC):
    """Reconfigures a VF on behalf of :class:`opi_cni.driver.AttachmentDriver`.

    Every reset/release method must be idempotent: DEL may be retried after a
    partial failure and ADD compensation may run against a VF that never got
    as far as the step being undone.
    """

    @abstractmethod
    def identify(self, pci_address: str) -> Tuple[str, int]:
        """Return ``(pf_name, vf_index)`` for the VF at ``pci_address``."""

    @abstractmethod
    def link_names(self, pci_address: str) -> List[str]:
        """Return the host netdev names of the VF (empty if it has none)."""

    @abstractmethod
    def has_dpdk_driver(self, pci_address: str) -> bool:
        """Return ``True`` if the VF is bound to a userspace driver."""

    @abstractmethod
    def fill_original_state(self, conf: NetConf) -> None:
        """Snapshot the VF state into ``conf.orig_vf_state``."""

    @abstractmethod
    def apply_config(self, conf: NetConf) -> None:
        """Apply administrative settings (MAC) through the PF."""

    @abstractmethod
    def setup(self, conf: NetConf, ifname: str, netns: NetNamespace) -> str:
        """Move the VF into ``netns`` as ``ifname`` and return its MAC."""

    @abstractmethod
    def release(self, conf: NetConf, ifname: str, netns: NetNamespace) -> None:
        """Move ``ifname`` back to the host and restore its original name."""

    @abstractmethod
    def reset_admin(self, conf: NetConf) -> None:
        """Undo :meth:`apply_config`.

        Must run before the VF leaves the container namespace: some drivers
        refuse the reset once trust is off inside the container.
        """

    @abstractmethod
    def reset_to_original(self, conf: NetConf) -> None:
        """Restore the host-side VF netdev (name, MAC) from the snapshot."""


def lookup_mac_for_pci(pci_address: str, mapping_path: str) -> str:
    """Return the MAC recorded for ``pci_address`` in a PCI-to-MAC JSON map.

    VFs bound to userspace drivers have no netdev to read a MAC from, so the
    node keeps a ``{"<pci>": "<mac>"}`` file for them.
    """

    if not mapping_path:
        raise MappingError("pci_to_mac_path cannot be empty when the device is not a netdev")
    path = Path(mapping_path)
    try:
        mapping = json.loads(path.read_text())
    except OSError as exc:
        raise MappingError(f"failed to read pci to mac file {path}: {exc}") from exc
    except ValueError as exc:
        raise MappingError(f"failed to parse pci to mac file {path}: {exc}") from exc

    if not isinstance(mapping, dict):
        raise MappingError(f"pci to mac file {path} must contain a mapping")
    mac = mapping.get(pci_address)
    if not mac:
        raise MappingError(f"no MAC recorded for pci {pci_address} in {path}")
    LOG.debug("pci %s maps to MAC %s", pci_address, mac)
    return str(mac)
