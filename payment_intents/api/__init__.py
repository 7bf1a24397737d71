"""HTTP API for payment intents."""
from .main import create_app

__all__ = ["create_app"]
