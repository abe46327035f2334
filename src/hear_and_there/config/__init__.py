"""Configuration loading: defaults, YAML file, .env and environment overrides."""

from hear_and_there.config.loader import YamlConfigLoader
from hear_and_there.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
