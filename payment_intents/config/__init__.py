"""Configuration package for the payment intents service."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
