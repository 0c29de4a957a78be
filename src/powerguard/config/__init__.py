"""Configuration loading and validation."""

from powerguard.config.loader import Config, ConfigError, load_config

__all__ = ["Config", "ConfigError", "load_config"]
