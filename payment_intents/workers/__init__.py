"""Background workers for periodic maintenance."""
from .idempotency_sweeper import IdempotencySweeper

__all__ = ["IdempotencySweeper"]
