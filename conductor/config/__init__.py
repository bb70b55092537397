"""Configuration module for conductor."""

from conductor.config.loader import get_config_path, load_config, save_config
from conductor.config.schema import Config, MCPServerConfig

__all__ = ["Config", "MCPServerConfig", "get_config_path", "load_config", "save_config"]
