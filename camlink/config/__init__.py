"""
camlink Configuration Module

Provides centralized configuration management.

Usage:
    from camlink.config import Defaults
    timeout = Defaults.SESSION_TIMEOUT
"""

from .defaults import Defaults, AppDefaults, load_defaults_from_env

__all__ = ["Defaults", "AppDefaults", "load_defaults_from_env"]
