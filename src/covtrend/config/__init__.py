"""Configuration file support for covtrend."""

from covtrend.config.loader import ConfigLoader, FileConfig, load_config

__all__ = [
    "ConfigLoader",
    "FileConfig",
    "load_config",
]
