"""opi CNI plugin runtime helpers."""

from .config import PluginConfig, load_config  # noqa: F401

__all__ = [
    "PluginConfig",
    "load_config",
]
