"""ImageHive - local-first prompt crafting chat with image rendering."""

__version__ = "0.3.0"

from imagehive.core.config import ImageHiveConfig, config

__all__ = [
    "ImageHiveConfig",
    "config",
]
