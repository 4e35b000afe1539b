"""Configuration module for the Krushi API client."""
from .settings import ClientConfig, load_settings

__all__ = ["ClientConfig", "load_settings"]
