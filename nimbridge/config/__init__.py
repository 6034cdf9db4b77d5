"""Configuration package."""

from nimbridge.config.loader import load_config
from nimbridge.config.schema import Config

__all__ = ["Config", "load_config"]
