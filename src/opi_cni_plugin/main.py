"""Entry point invoked by the container runtime."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import IO, Any, Dict, Mapping, Optional

from opi_cni.allocator import PCIAllocator
from opi_cni.bridge_port import BridgePortClient
from opi_cni.cache import AttachmentCache
from opi_cni.config import CmdArgs
from opi_cni.driver import AttachmentDriver
from opi_cni.errors import CODE_INVALID_ENV, OpiCniError
from opi_cni.ipam import IpamDelegate
from opi_cni.resolver import ConfigResolver
from opi_cni.store import FileStateStore
from opi_cni.vf import SriovManager

from .config import PluginConfig, load_config
from .result import DEFAULT_VERSION, format_error, format_result, version_info

LOG = logging.getLogger(__name__)

_REQUIRED_ENV = {
    "ADD": ("CNI_CONTAINERID", "CNI_NETNS", "CNI_IFNAME"),
    "DEL": ("CNI_CONTAINERID", "CNI_IFNAME"),
    "CHECK": ("CNI_CONTAINERID", "CNI_NETNS", "CNI_IFNAME"),
}


def _setup_logging(config: PluginConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level, logging.INFO)
    kwargs: Dict[str, Any] = {}
    if config.logging.file:
        kwargs["filename"] = str(config.logging.file)
    else:
        # stdout carries the CNI result
        kwargs["stream"] = sys.stderr
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        **kwargs,
    )


def build_driver(config: PluginConfig) -> AttachmentDriver:
    store = FileStateStore(config.state_dir)
    allocator = PCIAllocator(store)
    vf_manager = SriovManager(sysfs_root=config.sysfs_root)
    return AttachmentDriver(
        resolver=ConfigResolver(vf_manager, allocator, search_paths=config.conf_search_paths),
        vf_manager=vf_manager,
        allocator=allocator,
        cache=AttachmentCache(store),
        ipam=IpamDelegate(timeout=config.ipam_timeout),
        bridge_port_factory=lambda target: BridgePortClient(target, timeout=config.rpc_timeout),
    )


def _peek_version(stdin_data: bytes) -> str:
    try:
        payload = json.loads(stdin_data)
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("cniVersion", ""))
    return ""


def cmd_args_from_env(command: str, environ: Mapping[str, str], stdin_data: bytes) -> CmdArgs:
    missing = [name for name in _REQUIRED_ENV[command] if not environ.get(name)]
    if missing:
        raise OpiCniError(
            f"required env variables [{', '.join(missing)}] missing",
            code=CODE_INVALID_ENV,
        )
    return CmdArgs(
        container_id=environ.get("CNI_CONTAINERID", ""),
        netns=environ.get("CNI_NETNS", ""),
        ifname=environ.get("CNI_IFNAME", ""),
        args=environ.get("CNI_ARGS", ""),
        path=environ.get("CNI_PATH", ""),
        stdin_data=stdin_data,
    )


def _emit(stdout: IO[str], payload: Dict[str, Any]) -> None:
    stdout.write(json.dumps(payload))
    stdout.write("\n")
    stdout.flush()


def run(
    command: str,
    environ: Mapping[str, str],
    stdin_data: bytes,
    stdout: IO[str],
    driver: AttachmentDriver,
) -> int:
    cni_version = _peek_version(stdin_data)
    try:
        if command not in _REQUIRED_ENV:
            raise OpiCniError(f"unknown CNI_COMMAND {command!r}", code=CODE_INVALID_ENV)
        cmd_args = cmd_args_from_env(command, environ, stdin_data)
        if command == "ADD":
            result = driver.add(cmd_args)
            _emit(stdout, format_result(result, cni_version))
        elif command == "DEL":
            driver.delete(cmd_args)
        else:
            driver.check(cmd_args)
    except OpiCniError as exc:
        LOG.error("%s failed: %s", command, exc)
        _emit(stdout, format_error(exc, cni_version))
        return 1
    except Exception as exc:
        LOG.exception("%s failed with an unexpected error", command)
        _emit(stdout, format_error(exc, cni_version))
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="opi CNI plugin")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the plugin settings file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    command = os.environ.get("CNI_COMMAND", "")
    stdin_data = sys.stdin.buffer.read()
    if command == "VERSION":
        _emit(sys.stdout, version_info(_peek_version(stdin_data) or DEFAULT_VERSION))
        return 0

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        _emit(sys.stdout, format_error(OpiCniError(f"failed to load plugin settings: {exc}"), ""))
        return 1
    _setup_logging(config, args.verbose)

    return run(command, os.environ, stdin_data, sys.stdout, build_driver(config))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
