"""opi CNI plugin core.

This package attaches SR-IOV VFs of an xPU (IPU/DPU) to container network
namespaces and registers each VF with the xPU infra manager as a bridge port,
so the logical bridges served by the card reach the container.

The entry point for container runtimes lives in :mod:`opi_cni_plugin`; this
package holds the pieces it wires together:

* :class:`opi_cni.resolver.ConfigResolver` merges the network configuration
  with host defaults and detects whether the VF is a netdev or bound to a
  DPDK driver;
* :class:`opi_cni.bridge_port.BridgePortClient` talks gRPC to the infra
  manager;
* :class:`opi_cni.allocator.PCIAllocator` and
  :class:`opi_cni.cache.AttachmentCache` keep the state that must survive
  between the ADD and DEL processes; and
* :class:`opi_cni.driver.AttachmentDriver` runs ADD with rollback on failure
  and an idempotent DEL.
"""

from .driver import AttachmentDriver  # noqa: F401

__all__ = ["AttachmentDriver"]
