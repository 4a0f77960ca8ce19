"""Configuration package: settings and constants."""

from cacheguard.core.config.constants import ConnectionMode, Stage
from cacheguard.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    "ConnectionMode",
    "Settings",
    "Stage",
    "get_settings",
    "reload_settings",
]
