"""Attach and detach xPU VFs to container network namespaces.

:class:`AttachmentDriver` sequences the resolver, the VF manager, the bridge
port client, the IPAM delegate, the allocation guard and the attachment cache.
ADD is all-or-nothing: every committed step pushes its undo action on a
:class:`~opi_cni.rollback.CompensationStack` which is unwound on failure.  DEL
works from the cached configuration only and every step is idempotent, so
the runtime may call it again until it succeeds.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .allocator import PCIAllocator
from .bridge_port import BridgePortClient
from .cache import AttachmentCache
from .config import AttachmentResult, CmdArgs, IpamResult, NetConf
from .errors import ConfigError, IpamError, NamespaceNotFound, OpiCniError
from .ipam import IpamDelegate, announce_ips, configure_iface
from .netns import NetNamespace
from .resolver import ConfigResolver
from .rollback import CompensationStack
from .vf import VFManager, lookup_mac_for_pci

LOG = logging.getLogger(__name__)

STEP_RESOLVE = "resolve"
STEP_NETNS = "netns"
STEP_VF_CONFIG = "vf-config"
STEP_VF_SETUP = "vf-setup"
STEP_BRIDGE_PORT = "bridge-port"
STEP_IPAM = "ipam"
STEP_ALLOCATE = "allocate"
STEP_CACHE = "cache"
STEP_VF_RESET = "vf-reset"
STEP_VF_RELEASE = "vf-release"


class AttachmentDriver:
    """ADD/DEL/CHECK procedures for one VF attachment."""

    def __init__(
        self,
        resolver: ConfigResolver,
        vf_manager: VFManager,
        allocator: PCIAllocator,
        cache: AttachmentCache,
        ipam: Optional[IpamDelegate] = None,
        bridge_port_factory: Callable[[str], BridgePortClient] = BridgePortClient,
        netns_opener: Callable[[str], NetNamespace] = NetNamespace.open,
        iface_configurator: Callable[[str, IpamResult], None] = configure_iface,
        announcer: Callable = announce_ips,
    ) -> None:
        self._resolver = resolver
        self._vf = vf_manager
        self._allocator = allocator
        self._cache = cache
        self._ipam = ipam or IpamDelegate()
        self._bridge_port_factory = bridge_port_factory
        self._open_netns = netns_opener
        self._configure_iface = iface_configurator
        self._announce = announcer

    # ------------------------------------------------------------------
    # ADD
    # ------------------------------------------------------------------
    def add(self, cmd_args: CmdArgs) -> AttachmentResult:
        rollback = CompensationStack()
        step = STEP_RESOLVE
        netns: Optional[NetNamespace] = None
        try:
            conf = self._resolver.resolve(cmd_args.stdin_data)
            self._apply_mac_overrides(conf, cmd_args)

            step = STEP_NETNS
            netns = self._open_netns(cmd_args.netns)

            step = STEP_VF_CONFIG
            self._vf.fill_original_state(conf)
            rollback.push("reset VF admin config", lambda: self._vf.reset_admin(conf))
            self._vf.apply_config(conf)

            step = STEP_VF_SETUP
            if conf.dpdk_mode:
                mac = lookup_mac_for_pci(conf.device_id, conf.pci_to_mac_path)
            else:
                # admin reset first, release only afterwards
                rollback.push(
                    "release VF from container",
                    lambda: self._undo_setup(conf, cmd_args),
                )
                mac = self._vf.setup(conf, cmd_args.ifname, netns)

            step = STEP_BRIDGE_PORT
            client = self._bridge_port_factory(conf.xpu_infra_mgr_conn)
            # create() records the port name on conf even if the port is not up
            rollback.push("delete bridge port", lambda: client.delete(conf.bridge_port_name))
            client.create(conf, mac)

            ipam_result: Optional[IpamResult] = None
            if conf.ipam_type:
                step = STEP_IPAM
                ipam_result = self._run_ipam(conf, cmd_args, netns, mac, rollback)

            step = STEP_ALLOCATE
            self._allocator.claim(conf.device_id, cmd_args.netns)
            rollback.push("release allocation", lambda: self._allocator.release(conf.device_id))

            step = STEP_CACHE
            self._cache.put(cmd_args.container_id, cmd_args.ifname, conf)
            rollback.push(
                "delete cached config",
                lambda: self._cache.delete(cmd_args.container_id, cmd_args.ifname),
            )
        except Exception as exc:
            if isinstance(exc, OpiCniError) and exc.step is None:
                exc.step = step
            LOG.error("ADD %s/%s failed at %s: %s", cmd_args.container_id, cmd_args.ifname, step, exc)
            failed = rollback.unwind()
            if failed:
                LOG.error("rollback left %d step(s) incomplete: %s", len(failed), failed)
            raise
        finally:
            if netns is not None:
                netns.close()

        rollback.discard()
        LOG.info(
            "attached %s (bridge port %s) to %s as %s",
            conf.device_id,
            conf.bridge_port_name,
            cmd_args.netns,
            cmd_args.ifname,
        )
        return AttachmentResult(
            ifname=cmd_args.ifname,
            sandbox=cmd_args.netns,
            mac=mac,
            ipam=ipam_result,
        )

    def _apply_mac_overrides(self, conf: NetConf, cmd_args: CmdArgs) -> None:
        try:
            env_mac = cmd_args.env_args().get("MAC", "")
        except ValueError as exc:
            raise ConfigError(f"failed to parse args: {exc}") from exc
        if env_mac:
            conf.mac = env_mac
        # runtimeConfig takes preference over CNI_ARGS
        if conf.runtime_mac:
            conf.mac = conf.runtime_mac

    def _run_ipam(
        self,
        conf: NetConf,
        cmd_args: CmdArgs,
        netns: NetNamespace,
        mac: str,
        rollback: CompensationStack,
    ) -> IpamResult:
        result = self._ipam.add(conf.ipam_type, cmd_args)
        rollback.push("release IPAM addresses", lambda: self._ipam.delete(conf.ipam_type, cmd_args))

        if not result.ips:
            raise IpamError("IPAM plugin returned missing IP config")

        if not conf.dpdk_mode:
            netns.do(self._configure_iface, cmd_args.ifname, result)
            try:
                failed = netns.do(self._announce, cmd_args.ifname, mac, result.ips)
            except (OpiCniError, OSError) as exc:
                LOG.debug("skipping address announcement on %s: %s", cmd_args.ifname, exc)
            else:
                if failed:
                    LOG.debug("could not announce %s on %s", failed, cmd_args.ifname)
        return result

    def _undo_setup(self, conf: NetConf, cmd_args: CmdArgs) -> None:
        self._vf.reset_admin(conf)
        self._release_vf(conf, cmd_args.ifname, cmd_args.netns)

    # ------------------------------------------------------------------
    # DEL
    # ------------------------------------------------------------------
    def delete(self, cmd_args: CmdArgs) -> None:
        conf = self._cache.get(cmd_args.container_id, cmd_args.ifname)
        if conf is None:
            LOG.info(
                "no cached config for %s/%s, nothing to delete",
                cmd_args.container_id,
                cmd_args.ifname,
            )
            return

        step = STEP_IPAM
        try:
            if conf.ipam_type:
                self._ipam.delete(conf.ipam_type, cmd_args)

            step = STEP_BRIDGE_PORT
            self._bridge_port_factory(conf.xpu_infra_mgr_conn).delete(conf.bridge_port_name)

            # must precede any release from the container namespace
            step = STEP_VF_RESET
            self._vf.reset_admin(conf)

            if not conf.dpdk_mode:
                step = STEP_VF_RELEASE
                self._release_vf(conf, cmd_args.ifname, cmd_args.netns)

            step = STEP_ALLOCATE
            self._allocator.release(conf.device_id)

            step = STEP_CACHE
            self._cache.delete(cmd_args.container_id, cmd_args.ifname)
        except OpiCniError as exc:
            if exc.step is None:
                exc.step = step
            LOG.error("DEL %s/%s failed at %s: %s", cmd_args.container_id, cmd_args.ifname, step, exc)
            raise

        LOG.info("detached %s from %s", conf.device_id, cmd_args.container_id)

    def _release_vf(self, conf: NetConf, ifname: str, netns_path: str) -> None:
        if not netns_path:
            self._vf.reset_to_original(conf)
            return
        try:
            netns = self._open_netns(netns_path)
        except NamespaceNotFound:
            LOG.info("netns %s is gone, resetting %s on the host", netns_path, conf.device_id)
            self._vf.reset_to_original(conf)
            return

        with netns:
            self._vf.release(conf, ifname, netns)
            # covers a VF that was not found in the container namespace
            self._vf.reset_to_original(conf)

    # ------------------------------------------------------------------
    # CHECK
    # ------------------------------------------------------------------
    def check(self, cmd_args: CmdArgs) -> None:
        LOG.debug("CHECK %s/%s", cmd_args.container_id, cmd_args.ifname)
