"""
Config module - Application configuration and settings.
"""

from medportal.config.settings import Settings, get_settings, reload_settings
from medportal.config.env import load_environment

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "load_environment"
]
