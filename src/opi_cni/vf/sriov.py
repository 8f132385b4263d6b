"""SR-IOV VF management through sysfs and netlink."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Tuple

from pyroute2 import IPRoute, NetlinkError

from ..config import NetConf
from ..errors import ResolutionError, VFError
from ..netns import NetNamespace
from .base import VFManager

LOG = logging.getLogger(__name__)

DPDK_DRIVERS = ("vfio-pci", "uio_pci_generic", "igb_uio")

# RTEXT_FILTER_VF, asks the kernel to include IFLA_VFINFO_LIST
_EXT_MASK_VF = 1


def _lookup(ipr: IPRoute, ifname: str) -> int:
    found = ipr.link_lookup(ifname=ifname)
    if not found:
        raise VFError(f"interface {ifname} not found")
    return found[0]


class SriovManager(VFManager):
    """Drive VFs of SR-IOV capable PFs.

    ``sysfs_root`` is injectable so tests can lay out a fake
    ``bus/pci/devices`` tree.
    """

    def __init__(self, sysfs_root: Path = Path("/sys")) -> None:
        self._pci_devices = Path(sysfs_root) / "bus" / "pci" / "devices"

    def _pci_dir(self, pci_address: str) -> Path:
        return self._pci_devices / pci_address

    # ------------------------------------------------------------------
    # sysfs queries
    # ------------------------------------------------------------------
    def identify(self, pci_address: str) -> Tuple[str, int]:
        physfn = self._pci_dir(pci_address) / "physfn"
        try:
            pf_names = sorted(os.listdir(physfn / "net"))
        except OSError as exc:
            raise ResolutionError(f"failed to find PF of VF {pci_address}: {exc}") from exc
        if not pf_names:
            raise ResolutionError(f"PF of VF {pci_address} has no network interface")

        for entry in physfn.iterdir():
            if not entry.name.startswith("virtfn"):
                continue
            if entry.resolve().name == pci_address:
                return pf_names[0], int(entry.name[len("virtfn"):])
        raise ResolutionError(f"failed to find VF index of {pci_address} on {pf_names[0]}")

    def link_names(self, pci_address: str) -> List[str]:
        try:
            return sorted(os.listdir(self._pci_dir(pci_address) / "net"))
        except FileNotFoundError:
            return []

    def has_dpdk_driver(self, pci_address: str) -> bool:
        driver = self._pci_dir(pci_address) / "driver"
        if not driver.exists():
            return False
        return driver.resolve().name in DPDK_DRIVERS

    def _read_address(self, pci_address: str, ifname: str) -> str:
        try:
            return (self._pci_dir(pci_address) / "net" / ifname / "address").read_text().strip()
        except OSError:
            return ""

    # ------------------------------------------------------------------
    # netlink operations
    # ------------------------------------------------------------------
    def _admin_mac(self, ipr: IPRoute, conf: NetConf) -> str:
        pf_index = _lookup(ipr, conf.master)
        link = ipr.get_links(pf_index, ext_mask=_EXT_MASK_VF)[0]
        vfinfo_list = link.get_attr("IFLA_VFINFO_LIST")
        if vfinfo_list is None:
            return ""
        for vfinfo in vfinfo_list.get_attrs("IFLA_VF_INFO"):
            mac = vfinfo.get_attr("IFLA_VF_MAC")
            if mac and mac.get("vf") == conf.vf_id:
                return mac.get("mac", "")
        return ""

    def fill_original_state(self, conf: NetConf) -> None:
        state = conf.orig_vf_state
        if state.host_ifname:
            state.effective_mac = self._read_address(conf.device_id, state.host_ifname)
        try:
            with IPRoute() as ipr:
                state.admin_mac = self._admin_mac(ipr, conf)
        except NetlinkError as exc:
            raise VFError(f"failed to read VF {conf.vf_id} info of {conf.master}: {exc}") from exc
        LOG.debug("original state of %s: %s", conf.device_id, state)

    def _set_vf_mac(self, conf: NetConf, mac: str) -> None:
        with IPRoute() as ipr:
            pf_index = _lookup(ipr, conf.master)
            ipr.link("set", index=pf_index, vf={"vf": conf.vf_id, "mac": mac})

    def apply_config(self, conf: NetConf) -> None:
        if not conf.mac:
            return
        try:
            self._set_vf_mac(conf, conf.mac)
        except NetlinkError as exc:
            raise VFError(f"failed to set MAC {conf.mac} on VF {conf.vf_id}: {exc}") from exc
        LOG.info("set admin MAC %s on %s vf %d", conf.mac, conf.master, conf.vf_id)

    def setup(self, conf: NetConf, ifname: str, netns: NetNamespace) -> str:
        host_ifname = conf.orig_vf_state.host_ifname
        try:
            with IPRoute() as ipr:
                index = _lookup(ipr, host_ifname)
                ipr.link("set", index=index, state="down")
                if conf.mac:
                    ipr.link("set", index=index, address=conf.mac)
                ipr.link("set", index=index, net_ns_fd=netns.fd)
        except NetlinkError as exc:
            raise VFError(f"failed to move {host_ifname} to {netns.path}: {exc}") from exc

        def _configure() -> str:
            with IPRoute() as ipr:
                index = _lookup(ipr, host_ifname)
                ipr.link("set", index=index, ifname=ifname)
                ipr.link("set", index=index, state="up")
                return ipr.get_links(index)[0].get_attr("IFLA_ADDRESS")

        try:
            mac = netns.do(_configure)
        except NetlinkError as exc:
            raise VFError(f"failed to set up {ifname} in {netns.path}: {exc}") from exc
        LOG.info("moved %s into %s as %s (mac=%s)", host_ifname, netns.path, ifname, mac)
        return mac

    def release(self, conf: NetConf, ifname: str, netns: NetNamespace) -> None:
        host_ifname = conf.orig_vf_state.host_ifname
        host_fd = os.open("/proc/self/ns/net", os.O_RDONLY)

        def _move_back() -> bool:
            with IPRoute() as ipr:
                # an interrupted setup may have left the host name in place
                found = ipr.link_lookup(ifname=ifname) or ipr.link_lookup(ifname=host_ifname)
                if not found:
                    return False
                index = found[0]
                ipr.link("set", index=index, state="down")
                ipr.link("set", index=index, ifname=host_ifname)
                ipr.link("set", index=index, net_ns_fd=host_fd)
                return True

        try:
            moved = netns.do(_move_back)
        except NetlinkError as exc:
            raise VFError(f"failed to release {ifname} from {netns.path}: {exc}") from exc
        finally:
            os.close(host_fd)
        if moved:
            LOG.info("released %s from %s as %s", ifname, netns.path, host_ifname)
        else:
            LOG.debug("%s not found in %s, assuming it is on the host", ifname, netns.path)

    def reset_admin(self, conf: NetConf) -> None:
        if not conf.mac:
            return
        mac = conf.orig_vf_state.admin_mac or "00:00:00:00:00:00"
        try:
            self._set_vf_mac(conf, mac)
        except NetlinkError as exc:
            raise VFError(f"failed to restore admin MAC of VF {conf.vf_id}: {exc}") from exc
        LOG.info("restored admin MAC %s on %s vf %d", mac, conf.master, conf.vf_id)

    def reset_to_original(self, conf: NetConf) -> None:
        names = self.link_names(conf.device_id)
        if not names:
            LOG.debug("VF %s has no host netdev, nothing to reset", conf.device_id)
            return

        state = conf.orig_vf_state
        try:
            with IPRoute() as ipr:
                index = _lookup(ipr, names[0])
                ipr.link("set", index=index, state="down")
                if state.host_ifname and names[0] != state.host_ifname:
                    ipr.link("set", index=index, ifname=state.host_ifname)
                if conf.mac and state.effective_mac:
                    ipr.link("set", index=index, address=state.effective_mac)
        except NetlinkError as exc:
            raise VFError(f"failed to reset VF {conf.device_id}: {exc}") from exc
        LOG.info("reset VF %s to its original state", conf.device_id)
