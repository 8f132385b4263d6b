"""PCI allocation guard for VFs handed out to containers."""

from __future__ import annotations

import logging
from typing import Optional

from .errors import AlreadyAllocated
from .store import StateStore

LOG = logging.getLogger(__name__)


class PCIAllocator:
    """Durable claim on a VF PCI address.

    A claim is a record keyed by the PCI address whose value is the network
    namespace path of the owning container.  The record outlives the plugin
    process so a later, independent DEL can release it, and an ADD for the
    same VF is refused until that DEL has finished its teardown, even when
    the owning namespace is already gone.

    Parameters
    ----------
    store:
        Durable key/value store shared by every invocation on the host.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def owner(self, pci_address: str) -> Optional[str]:
        raw = self._store.get(pci_address)
        if raw is None:
            return None
        return raw.decode("utf-8", "replace").strip()

    def is_claimed(self, pci_address: str) -> bool:
        return self._store.get(pci_address) is not None

    def claim(self, pci_address: str, owner: str) -> None:
        if not self._store.create(pci_address, owner.encode("utf-8")):
            raise AlreadyAllocated(
                f"pci address {pci_address} is already allocated to {self.owner(pci_address)}"
            )
        LOG.info("claimed pci address %s for %s", pci_address, owner)

    def release(self, pci_address: str) -> None:
        self._store.delete(pci_address)
        LOG.info("released pci address %s", pci_address)
