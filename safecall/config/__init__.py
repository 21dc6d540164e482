# Config Package
"""
Environment-driven configuration for the session core.

Usage:
    from safecall.config import config

    config.session.idle_window_seconds
"""

from safecall.config.settings import Config, config

__all__ = ["Config", "config"]
