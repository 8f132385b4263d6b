"""Rendering of CNI results, errors and version information."""

from __future__ import annotations

from typing import Any, Dict, List

from opi_cni.config import AttachmentResult
from opi_cni.errors import CODE_INTERNAL, OpiCniError
from opi_cni.resolver import SUPPORTED_VERSIONS

DEFAULT_VERSION = "1.0.0"


def _version_tuple(version: str) -> tuple:
    try:
        return tuple(int(part) for part in version.split("."))
    except ValueError:
        return ()


def format_result(result: AttachmentResult, cni_version: str) -> Dict[str, Any]:
    """Render ``result`` in the format of ``cni_version``.

    Results before 1.0.0 carry an explicit IP ``version`` field.
    """

    version = cni_version or DEFAULT_VERSION
    legacy = _version_tuple(version) < (1, 0, 0)

    ips: List[Dict[str, Any]] = []
    routes: List[Dict[str, Any]] = []
    dns: Dict[str, Any] = {}
    if result.ipam is not None:
        for ipc in result.ipam.ips:
            entry: Dict[str, Any] = {"address": ipc.address, "interface": 0}
            if ipc.gateway:
                entry["gateway"] = ipc.gateway
            if legacy:
                entry["version"] = ipc.version
            ips.append(entry)
        for route in result.ipam.routes:
            route_entry: Dict[str, Any] = {"dst": route.dst}
            if route.gw:
                route_entry["gw"] = route.gw
            routes.append(route_entry)
        dns = dict(result.ipam.dns)

    payload: Dict[str, Any] = {
        "cniVersion": version,
        "interfaces": [
            {"name": result.ifname, "mac": result.mac, "sandbox": result.sandbox},
        ],
        "dns": dns,
    }
    if ips:
        payload["ips"] = ips
    if routes:
        payload["routes"] = routes
    return payload


def format_error(exc: Exception, cni_version: str) -> Dict[str, Any]:
    if isinstance(exc, OpiCniError):
        code, msg, details = exc.code, str(exc), exc.details
    else:
        code, msg, details = CODE_INTERNAL, f"unexpected error: {exc}", type(exc).__name__
    payload: Dict[str, Any] = {
        "cniVersion": cni_version or DEFAULT_VERSION,
        "code": code,
        "msg": msg,
    }
    if details:
        payload["details"] = details
    return payload


def version_info(cni_version: str = DEFAULT_VERSION) -> Dict[str, Any]:
    return {"cniVersion": cni_version, "supportedVersions": list(SUPPORTED_VERSIONS)}
