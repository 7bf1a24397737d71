"""
Health checks backing the liveness and readiness endpoints.

Checks:
- Processing orchestrator (in-flight runs)
- Idempotency cache (stored records, sweeper state)
"""
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

from payment_intents.core.models import utcnow

if TYPE_CHECKING:
    from payment_intents.core.service import PaymentService
    from payment_intents.workers.idempotency_sweeper import IdempotencySweeper

logger = structlog.get_logger(__name__)


class HealthCheck:
    """Health check service for the in-process payment components."""

    def __init__(
        self,
        service: "PaymentService",
        sweeper: Optional["IdempotencySweeper"] = None,
    ) -> None:
        self.service = service
        self.sweeper = sweeper

    def check_orchestrator(self) -> Dict[str, Any]:
        failed_runs = self.service.orchestrator.failed_runs
        return {
            "status": "unhealthy" if failed_runs else "healthy",
            "service": "orchestrator",
            "in_flight": self.service.orchestrator.in_flight,
            "failed_runs": len(failed_runs),
        }

    def check_idempotency(self) -> Dict[str, Any]:
        sweeper_running = self.sweeper.running if self.sweeper is not None else False
        sweeper_died = self.sweeper.stopped_unexpectedly if self.sweeper is not None else False
        return {
            "status": "unhealthy" if sweeper_died else "healthy",
            "service": "idempotency",
            "records": len(self.service.idempotency),
            "sweeper_running": sweeper_running,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {
            "orchestrator": self.check_orchestrator(),
            "idempotency": self.check_idempotency(),
        }
        all_healthy = all(check["status"] == "healthy" for check in checks.values())
        if not all_healthy:
            logger.warning("health_check_degraded", checks=checks)

        return {
            "status": "ok" if all_healthy else "degraded",
            "timestamp": utcnow().isoformat(),
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Simple check that the application is running."""
        return {
            "status": "ok",
            "timestamp": utcnow().isoformat(),
        }
