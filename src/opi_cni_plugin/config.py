"""YAML loader for host-level plugin settings.

The network configuration arrives per invocation on stdin; these settings
describe the node itself (where state is kept, timeouts, logging) and are
shared by every invocation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from opi_cni.bridge_port import DEFAULT_TIMEOUT as DEFAULT_RPC_TIMEOUT
from opi_cni.ipam import DEFAULT_TIMEOUT as DEFAULT_IPAM_TIMEOUT
from opi_cni.resolver import DEFAULT_CONF_FILES
from opi_cni.store import DEFAULT_STATE_DIR

DEFAULT_CONFIG_PATH = Path("/etc/opi-cni/plugin.yaml")
CONFIG_ENV = "OPI_CNI_CONFIG"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[Path] = None


@dataclass
class PluginConfig:
    state_dir: Path = DEFAULT_STATE_DIR
    conf_search_paths: List[Path] = field(default_factory=lambda: list(DEFAULT_CONF_FILES))
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    ipam_timeout: float = DEFAULT_IPAM_TIMEOUT
    sysfs_root: Path = Path("/sys")
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _parse_logging(section: dict) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    log_file = section.get("file")
    return LoggingConfig(level=level, file=Path(log_file) if log_file else None)


def _parse_plugin(data: dict) -> PluginConfig:
    search_paths = data.get("conf_search_paths")
    if search_paths is None:
        paths = list(DEFAULT_CONF_FILES)
    elif isinstance(search_paths, list):
        paths = [Path(p) for p in search_paths]
    else:
        raise ValueError("'conf_search_paths' must be a list")

    logging_section = data.get("logging", {})
    if not isinstance(logging_section, dict):
        raise ValueError("'logging' section must be a mapping")

    return PluginConfig(
        state_dir=Path(data.get("state_dir", DEFAULT_STATE_DIR)),
        conf_search_paths=paths,
        rpc_timeout=float(data.get("rpc_timeout", DEFAULT_RPC_TIMEOUT)),
        ipam_timeout=float(data.get("ipam_timeout", DEFAULT_IPAM_TIMEOUT)),
        sysfs_root=Path(data.get("sysfs_root", "/sys")),
        logging=_parse_logging(logging_section),
    )


def load_config(path: Optional[Path] = None) -> PluginConfig:
    """Load settings from ``path``, ``$OPI_CNI_CONFIG`` or the default file.

    A missing file yields the defaults.
    """

    if path is None:
        path = Path(os.environ.get(CONFIG_ENV, DEFAULT_CONFIG_PATH))
    if not path.exists():
        return PluginConfig()

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid plugin configuration {path}: {exc}") from exc
    if data is None:
        return PluginConfig()
    if not isinstance(data, dict):
        raise ValueError("Plugin configuration must be a mapping")
    return _parse_plugin(data)
