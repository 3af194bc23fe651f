"""
Configuration for cartogram runs.
"""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
