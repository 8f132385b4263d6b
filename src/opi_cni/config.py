"""Configuration data structures for the opi CNI plugin.

:class:`NetConf` is the resolved configuration of one attachment.  It is built
once per ADD by :class:`opi_cni.resolver.ConfigResolver`, cached on success
and read back on DEL, so it round-trips through a JSON-compatible dict using
the same keys the network configuration payload uses.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

# Fields accepted for compatibility but not applied by the xPU path.
UNSUPPORTED_FIELDS = ("min_tx_rate", "max_tx_rate", "spoofchk", "trust", "link_state")


@dataclass
class VfState:
    """State of the VF as observed before the plugin touched it."""

    host_ifname: str = ""
    admin_mac: str = ""
    effective_mac: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "HostIFName": self.host_ifname,
            "AdminMAC": self.admin_mac,
            "EffectiveMAC": self.effective_mac,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VfState":
        return cls(
            host_ifname=str(data.get("HostIFName", "")),
            admin_mac=str(data.get("AdminMAC", "")),
            effective_mac=str(data.get("EffectiveMAC", "")),
        )


@dataclass
class NetConf:
    """Resolved network configuration for a single VF attachment.

    Attributes
    ----------
    device_id:
        PCI address of the VF in sysfs format, e.g. ``0000:af:06.0``.
    master:
        Name of the owning physical function netdev.
    vf_id:
        Index of the VF on ``master``.
    dpdk_mode:
        ``True`` when the VF is bound to a userspace driver and has no
        kernel-visible interface.
    logical_bridge / logical_bridges:
        Mutually exclusive; a single bridge creates an ACCESS port, a list
        creates a TRUNK port.
    bridge_port_name:
        Name assigned by the remote side; the only field updated after the
        configuration has been resolved.
    """

    cni_version: str = ""
    name: str = ""
    type: str = ""
    ipam: Dict[str, Any] = field(default_factory=dict)
    device_id: str = ""
    master: str = ""
    vf_id: int = 0
    dpdk_mode: bool = False
    mac: str = ""
    logical_bridge: str = ""
    logical_bridges: List[str] = field(default_factory=list)
    xpu_infra_mgr_conn: str = ""
    configuration_path: str = ""
    pci_to_mac_path: str = ""
    min_tx_rate: Optional[int] = None
    max_tx_rate: Optional[int] = None
    spoofchk: str = ""
    trust: str = ""
    link_state: str = ""
    runtime_mac: str = ""
    orig_vf_state: VfState = field(default_factory=VfState)
    bridge_port_name: str = ""

    @property
    def ipam_type(self) -> str:
        return str(self.ipam.get("type", "")) if self.ipam else ""

    def unsupported_fields_set(self) -> List[str]:
        return [name for name in UNSUPPORTED_FIELDS if getattr(self, name) not in (None, "")]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "cniVersion": self.cni_version,
            "name": self.name,
            "type": self.type,
            "deviceID": self.device_id,
            "Master": self.master,
            "VFID": self.vf_id,
            "DPDKMode": self.dpdk_mode,
            "MAC": self.mac,
            "logical_bridge": self.logical_bridge,
            "logical_bridges": list(self.logical_bridges),
            "xpu_infra_mgr_conn": self.xpu_infra_mgr_conn,
            "configuration_path": self.configuration_path,
            "pci_to_mac_path": self.pci_to_mac_path,
            "min_tx_rate": self.min_tx_rate,
            "max_tx_rate": self.max_tx_rate,
            "spoofchk": self.spoofchk,
            "trust": self.trust,
            "link_state": self.link_state,
            "OrigVfState": self.orig_vf_state.to_dict(),
            "BridgePortName": self.bridge_port_name,
        }
        if self.ipam:
            data["ipam"] = dict(self.ipam)
        if self.runtime_mac:
            data["runtimeConfig"] = {"mac": self.runtime_mac}
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NetConf":
        runtime = data.get("runtimeConfig") or {}
        bridges = data.get("logical_bridges") or []
        if not isinstance(bridges, (list, tuple)):
            raise ValueError("'logical_bridges' must be a list")
        ipam = data.get("ipam") or {}
        if not isinstance(ipam, dict):
            raise ValueError("'ipam' must be a mapping")
        return cls(
            cni_version=str(data.get("cniVersion", "")),
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            ipam=dict(ipam),
            device_id=str(data.get("deviceID", "")),
            master=str(data.get("Master", "")),
            vf_id=int(data.get("VFID", 0)),
            dpdk_mode=bool(data.get("DPDKMode", False)),
            mac=str(data.get("MAC", data.get("mac", "")) or ""),
            logical_bridge=str(data.get("logical_bridge", "") or ""),
            logical_bridges=[str(b) for b in bridges],
            xpu_infra_mgr_conn=str(data.get("xpu_infra_mgr_conn", "") or ""),
            configuration_path=str(data.get("configuration_path", "") or ""),
            pci_to_mac_path=str(data.get("pci_to_mac_path", "") or ""),
            min_tx_rate=_optional_int(data.get("min_tx_rate")),
            max_tx_rate=_optional_int(data.get("max_tx_rate")),
            spoofchk=str(data.get("spoofchk", "") or ""),
            trust=str(data.get("trust", "") or ""),
            link_state=str(data.get("link_state", "") or ""),
            runtime_mac=str(runtime.get("mac", "") or ""),
            orig_vf_state=VfState.from_dict(data.get("OrigVfState") or {}),
            bridge_port_name=str(data.get("BridgePortName", "") or ""),
        )


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


@dataclass(frozen=True)
class IPConfig:
    address: str
    gateway: Optional[str] = None

    @property
    def version(self) -> str:
        return "6" if ":" in self.address else "4"


@dataclass(frozen=True)
class Route:
    dst: str
    gw: Optional[str] = None


@dataclass
class IpamResult:
    """Subset of a CNI result produced by the IPAM delegate."""

    ips: Sequence[IPConfig] = field(default_factory=list)
    routes: Sequence[Route] = field(default_factory=list)
    dns: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IpamResult":
        ips: List[IPConfig] = []
        for entry in data.get("ips") or []:
            ips.append(IPConfig(address=str(entry["address"]), gateway=entry.get("gateway")))
        # legacy 0.2.0 results carry ip4/ip6 sections instead of "ips"
        for key in ("ip4", "ip6"):
            section = data.get(key)
            if section and section.get("ip"):
                ips.append(IPConfig(address=str(section["ip"]), gateway=section.get("gateway")))
        routes = [
            Route(dst=str(entry["dst"]), gw=entry.get("gw"))
            for entry in data.get("routes") or []
        ]
        return cls(ips=ips, routes=routes, dns=dict(data.get("dns") or {}))


@dataclass
class AttachmentResult:
    """Outcome of a successful ADD."""

    ifname: str
    sandbox: str
    mac: str
    ipam: Optional[IpamResult] = None


@dataclass(frozen=True)
class CmdArgs:
    """One plugin invocation as described by the CNI environment."""

    container_id: str
    netns: str
    ifname: str
    args: str = ""
    path: str = ""
    stdin_data: bytes = b""

    def env_args(self) -> Dict[str, str]:
        """Parse ``CNI_ARGS`` (``K1=V1;K2=V2``) into a mapping."""

        parsed: Dict[str, str] = {}
        for pair in self.args.split(";"):
            if not pair:
                continue
            key, sep, value = pair.partition("=")
            if not sep:
                raise ValueError(f"invalid CNI_ARGS pair {pair!r}")
            parsed[key.strip()] = value.strip()
        return parsed

    def environ(self, command: str) -> Dict[str, str]:
        """Environment for delegating ``command`` to another plugin."""

        env = dict(os.environ)
        env.update(
            {
                "CNI_COMMAND": command,
                "CNI_CONTAINERID": self.container_id,
                "CNI_NETNS": self.netns,
                "CNI_IFNAME": self.ifname,
                "CNI_ARGS": self.args,
                "CNI_PATH": self.path,
            }
        )
        return env
