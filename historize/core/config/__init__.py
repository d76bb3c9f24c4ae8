"""
Entity configuration loading and runtime settings.
"""

from .entity_loader import EntityConfigBuilder, EntityConfigLoader, build_entity_config
from .settings import Settings

__all__ = [
    "EntityConfigBuilder",
    "EntityConfigLoader",
    "Settings",
    "build_entity_config",
]
