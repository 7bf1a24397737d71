"""Storage for intents, jobs, payments and refunds."""
from .base import PaymentRepository
from .memory import InMemoryPaymentRepository

__all__ = ["PaymentRepository", "InMemoryPaymentRepository"]
