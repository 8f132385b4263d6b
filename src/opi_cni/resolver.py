"""Resolve a CNI network configuration into a :class:`NetConf`.

The payload handed over by the runtime is merged with an optional host-wide
"flat" configuration file.  Values from the payload always win; the flat file
only fills fields the payload leaves unset.  Resolution then asks the VF
manager who owns the VF and whether it is a kernel netdev or bound to a
userspace (DPDK) driver.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence

import yaml

from .allocator import PCIAllocator
from .config import NetConf, VfState
from .errors import (
    CODE_DECODING_FAILURE,
    CODE_INCOMPATIBLE_VERSION,
    AlreadyAllocated,
    ConfigError,
    InvalidConfig,
    ResolutionError,
    UnsupportedDevice,
)
from .vf import VFManager

LOG = logging.getLogger(__name__)

DEFAULT_CONF_FILES = (
    Path("/etc/kubernetes/cni/net.d/opi.d/opi.conf"),
    Path("/etc/cni/net.d/opi.d/opi.conf"),
)

SUPPORTED_VERSIONS = ("0.3.0", "0.3.1", "0.4.0", "1.0.0", "1.1.0")


def _is_unset(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_defaults(request: Mapping[str, Any], defaults: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``request`` with unset fields filled from ``defaults``.

    Nested mappings are merged recursively with the same rule.
    """

    merged = dict(request)
    for key, default in defaults.items():
        current = merged.get(key)
        if _is_unset(current):
            merged[key] = default
        elif isinstance(current, dict) and isinstance(default, dict):
            merged[key] = merge_defaults(current, default)
    return merged


def _version_tuple(version: str) -> tuple:
    try:
        return tuple(int(part) for part in version.split("."))
    except ValueError:
        return ()


class ConfigResolver:
    """Build a validated :class:`NetConf` from the raw CNI payload.

    Parameters
    ----------
    vf_manager:
        Backend used to identify the VF and detect its operating mode.
    allocator:
        Allocation guard; a VF still claimed by another container (for which
        DEL has not completed yet) is refused.
    search_paths:
        Candidate flat configuration files, tried in order after the
        ``configuration_path`` named in the payload.
    """

    def __init__(
        self,
        vf_manager: VFManager,
        allocator: PCIAllocator,
        search_paths: Sequence[Path] = DEFAULT_CONF_FILES,
    ) -> None:
        self._vf_manager = vf_manager
        self._allocator = allocator
        self._search_paths = [Path(p) for p in search_paths]

    def load_flat_conf(self, configuration_path: str = "") -> Dict[str, Any]:
        candidates = list(self._search_paths)
        if configuration_path:
            candidates.insert(0, Path(configuration_path))

        for candidate in candidates:
            if not candidate.exists():
                continue
            try:
                data = yaml.safe_load(candidate.read_text())
            except (OSError, yaml.YAMLError) as exc:
                raise ConfigError(f"failed to load flat config {candidate}: {exc}") from exc
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ConfigError(f"flat config {candidate} must be a mapping")
            LOG.debug("loaded flat config %s", candidate)
            return data
        return {}

    def parse(self, request: bytes) -> NetConf:
        """Decode and merge the payload without touching the host."""

        try:
            payload = json.loads(request)
        except ValueError as exc:
            raise ConfigError(f"failed to load netconf: {exc}", code=CODE_DECODING_FAILURE) from exc
        if not isinstance(payload, dict):
            raise ConfigError("netconf must be a JSON object")

        defaults = self.load_flat_conf(str(payload.get("configuration_path") or ""))
        merged = merge_defaults(payload, defaults)
        try:
            conf = NetConf.from_dict(merged)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid netconf: {exc}") from exc

        if conf.cni_version and _version_tuple(conf.cni_version) < (0, 3, 0):
            raise ConfigError(
                f"unsupported CNI version {conf.cni_version}", code=CODE_INCOMPATIBLE_VERSION
            )

        if conf.logical_bridge and conf.logical_bridges:
            raise InvalidConfig(
                "can not define both logical_bridge and logical_bridges, pick one of those"
            )
        return conf

    def resolve(self, request: bytes) -> NetConf:
        conf = self.parse(request)
        # filled in by this plugin only, never taken from the payload
        conf.bridge_port_name = ""
        conf.orig_vf_state = VfState()

        if not conf.device_id:
            raise ConfigError("VF pci addr is required")

        try:
            conf.master, conf.vf_id = self._vf_manager.identify(conf.device_id)
        except OSError as exc:
            raise ResolutionError(f"failed to get VF information of {conf.device_id}: {exc}") from exc

        # a VF released by a DEL that has not finished yet must not be reused
        if self._allocator.is_claimed(conf.device_id):
            raise AlreadyAllocated(f"pci address {conf.device_id} is already allocated")

        names = self._vf_manager.link_names(conf.device_id)
        if names:
            conf.orig_vf_state.host_ifname = names[0]
            conf.dpdk_mode = False
        else:
            conf.dpdk_mode = self._vf_manager.has_dpdk_driver(conf.device_id)
            if not conf.dpdk_mode:
                raise UnsupportedDevice(
                    f"the VF {conf.device_id} does not have an interface name or a dpdk driver"
                )

        ignored = conf.unsupported_fields_set()
        if ignored:
            LOG.warning(
                "the %s configuration fields are not supported currently and will be ignored",
                ", ".join(ignored),
            )

        LOG.debug(
            "resolved %s: pf=%s vf=%d dpdk=%s",
            conf.device_id,
            conf.master,
            conf.vf_id,
            conf.dpdk_mode,
        )
        return conf

