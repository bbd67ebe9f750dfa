"""Configuration."""

from .unified_config import Environment, UnifiedConfig, get_config, reload_config

__all__ = ["Environment", "UnifiedConfig", "get_config", "reload_config"]
