"""
Configuration management for Neynar History.

Loads settings from environment variables and an optional project-root .env.
Exposes a single source of truth for all service configuration.
"""

from neynar_history.config.settings import Settings, get_settings, reset_settings_cache

__all__ = ["Settings", "get_settings", "reset_settings_cache"]
