"""Core payment intent logic: state machine, orchestrator, idempotency, refunds."""
