"""Configuration loading and schema."""

from story_memory.config.loader import load_config
from story_memory.config.schema import AppConfig, AppConfigRoot, PlatformFormat

__all__ = ["AppConfig", "AppConfigRoot", "PlatformFormat", "load_config"]
