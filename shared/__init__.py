"""
Mirage Shared Module
=====================

Configuration, logging, console, numeric helpers and common models
shared by every Mirage component.
"""

from shared.config import MirageConfig, get_config

__all__ = ["MirageConfig", "get_config"]
