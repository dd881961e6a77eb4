"""Configuration module for rtchat."""

from rtchat.config.loader import get_config_path, load_config, save_config
from rtchat.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
