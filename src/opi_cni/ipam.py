"""IPAM delegation and in-namespace address configuration.

The IPAM plugin is executed the way any CNI runtime executes a plugin: the
binary named by ``ipam.type`` is looked up in ``CNI_PATH``, receives the
network configuration on stdin and the invocation through ``CNI_*``
environment variables, and prints a result (or an error) as JSON.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import socket
import struct
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from pyroute2 import IPRoute, NetlinkError

from .bridge_port import mac_to_bytes
from .config import CmdArgs, IpamResult, IPConfig
from .errors import IpamError, NamespaceError

LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class IpamDelegate:
    """Execute IPAM plugin binaries for ADD and DEL."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._timeout = timeout
        self._runner = runner

    def find_plugin(self, plugin: str, cni_path: str) -> Path:
        dirs = [d for d in cni_path.split(os.pathsep) if d]
        for directory in dirs:
            candidate = Path(directory) / plugin
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return candidate
        raise IpamError(f"failed to find plugin {plugin!r} in path {dirs}")

    def _exec(self, command: str, plugin: str, cmd_args: CmdArgs) -> bytes:
        binary = self.find_plugin(plugin, cmd_args.path)
        LOG.debug("executing IPAM %s %s", command, binary)
        try:
            proc = self._runner(
                [str(binary)],
                input=cmd_args.stdin_data,
                capture_output=True,
                env=cmd_args.environ(command),
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise IpamError(f"IPAM plugin {plugin} {command} timed out") from exc
        except OSError as exc:
            raise IpamError(f"failed to execute IPAM plugin {plugin}: {exc}") from exc

        if proc.returncode != 0:
            msg, details = _parse_error(proc.stdout, proc.stderr)
            raise IpamError(f"IPAM plugin {plugin} {command} failed: {msg}", details=details)
        return proc.stdout

    def add(self, plugin: str, cmd_args: CmdArgs) -> IpamResult:
        output = self._exec("ADD", plugin, cmd_args)
        try:
            return IpamResult.from_dict(json.loads(output))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise IpamError(f"failed to parse IPAM plugin {plugin} result: {exc}") from exc

    def delete(self, plugin: str, cmd_args: CmdArgs) -> None:
        self._exec("DEL", plugin, cmd_args)


def _parse_error(stdout: bytes, stderr: bytes) -> tuple:
    try:
        payload = json.loads(stdout)
    except ValueError:
        return (stderr or stdout).decode("utf-8", "replace").strip(), ""
    if not isinstance(payload, dict):
        return str(payload), ""
    return str(payload.get("msg", "")), str(payload.get("details", ""))


def _default_gateway(ips: Sequence[IPConfig], version: int) -> Optional[str]:
    for ipc in ips:
        if ipc.gateway and ipaddress.ip_interface(ipc.address).version == version:
            return ipc.gateway
    return None


def configure_iface(ifname: str, result: IpamResult) -> None:
    """Assign the IPAM addresses and routes to ``ifname``.

    Must run inside the container namespace (see
    :meth:`opi_cni.netns.NetNamespace.do`).
    """

    try:
        with IPRoute() as ipr:
            found = ipr.link_lookup(ifname=ifname)
            if not found:
                raise NamespaceError(f"interface {ifname} not found in container namespace")
            index = found[0]
            for ipc in result.ips:
                iface = ipaddress.ip_interface(ipc.address)
                ipr.addr(
                    "add",
                    index=index,
                    address=str(iface.ip),
                    prefixlen=iface.network.prefixlen,
                )
            ipr.link("set", index=index, state="up")
            for route in result.routes:
                dst = ipaddress.ip_network(route.dst, strict=False)
                gateway = route.gw or _default_gateway(result.ips, dst.version)
                kwargs = {"dst": str(dst), "oif": index}
                if gateway:
                    kwargs["gateway"] = gateway
                ipr.route("add", **kwargs)
    except NetlinkError as exc:
        raise IpamError(f"failed to configure {ifname}: {exc}") from exc
    LOG.info("configured %s with %s", ifname, [ipc.address for ipc in result.ips])


def _send_gratuitous_arp(ifname: str, address: ipaddress.IPv4Address, mac: bytes) -> None:
    arp = struct.pack("!HHBBH", 1, 0x0800, 6, 4, 1)
    frame = (
        b"\xff" * 6 + mac + struct.pack("!H", 0x0806)
        + arp + mac + address.packed + b"\x00" * 6 + address.packed
    )
    with socket.socket(socket.AF_PACKET, socket.SOCK_RAW) as sock:
        sock.bind((ifname, 0))
        sock.send(frame)


def _send_unsolicited_na(ifname: str, address: ipaddress.IPv6Address, mac: bytes) -> None:
    index = socket.if_nametoindex(ifname)
    # override flag set, checksum filled in by the kernel
    message = (
        struct.pack("!BBHI", 136, 0, 0, 0x20000000)
        + address.packed + struct.pack("!BB", 2, 1) + mac
    )
    with socket.socket(socket.AF_INET6, socket.SOCK_RAW, socket.IPPROTO_ICMPV6) as sock:
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, 255)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, index)
        sock.sendto(message, ("ff02::1", 0, 0, index))


def announce_ips(ifname: str, mac: str, ips: Sequence[IPConfig]) -> List[str]:
    """Send a gratuitous ARP / unsolicited NA for each address.

    Addresses are reused across containers with different MACs, so neighbours
    may hold stale entries.  Announcing is best effort: failures are logged
    and returned, never raised.
    """

    failed: List[str] = []
    try:
        raw_mac = mac_to_bytes(mac)
    except ValueError:
        LOG.debug("not announcing addresses of %s: invalid MAC %r", ifname, mac)
        return [ipc.address for ipc in ips]

    for ipc in ips:
        address = ipaddress.ip_interface(ipc.address).ip
        try:
            if address.version == 4:
                _send_gratuitous_arp(ifname, address, raw_mac)
            else:
                _send_unsolicited_na(ifname, address, raw_mac)
        except OSError as exc:
            LOG.debug("failed to announce %s on %s: %s", address, ifname, exc)
            failed.append(ipc.address)
    return failed
