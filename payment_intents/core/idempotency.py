"""
Idempotency cache for mutating payment requests.

A client-supplied key is bound to a fingerprint of the request and to the
response the first execution produced:

1. Unknown key: run the operation, then store ``{fingerprint, response}``
2. Known key, same fingerprint: return the stored response, run nothing
3. Known key, different fingerprint: reject with an idempotency conflict

Check-and-store runs under a per-key lock so two concurrent requests with
the same fresh key cannot both execute the operation.
"""
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from payment_intents.config import Settings, get_settings
from payment_intents.core.errors import IdempotencyConflictError, MalformedRequestError
from payment_intents.core.locking import KeyedLock
from payment_intents.core.models import utcnow
from payment_intents.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


@dataclass(frozen=True)
class StoredResponse:
    """
    A response envelope as first produced.

    The body is kept serialized so replays are byte-identical.
    """

    status_code: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        status_code: int,
        payload: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> "StoredResponse":
        return cls(
            status_code=status_code,
            body=json.dumps(payload, separators=(",", ":")),
            headers=dict(headers or {}),
        )

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass(frozen=True)
class IdempotencyRecord:
    """Immutable binding of a key to its first request and response."""

    key: str
    fingerprint: str
    response: StoredResponse
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class IdempotencyManager:
    """
    Manages idempotency keys and cached responses.

    Records live in process memory; keys are scoped to this process.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize idempotency manager.

        Args:
            settings: Optional settings (defaults to the cached instance)
            clock: Source of the current time, injectable for expiry tests
        """
        self.settings = settings or get_settings()
        self.clock = clock
        self.ttl = timedelta(seconds=self.settings.idempotency_ttl_seconds)
        self._records: Dict[str, IdempotencyRecord] = {}
        self._locks = KeyedLock()

    @staticmethod
    def fingerprint(operation: str, body: Mapping[str, Any]) -> str:
        """
        Hash a normalized request.

        Key order and whitespace do not affect the result. The operation
        name is included so one key cannot be reused across operations.

        Args:
            operation: Operation name, including the target resource id
            body: Decoded request body

        Returns:
            str: Hex SHA-256 digest
        """
        normalized = json.dumps(
            {"operation": operation, "body": body},
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    @staticmethod
    def require_key(idempotency_key: Optional[str]) -> str:
        """
        Reject a mutating request that carries no usable key.

        Raises:
            MalformedRequestError: If the key is missing or blank
        """
        if idempotency_key is None or not idempotency_key.strip():
            raise MalformedRequestError(
                f"{IDEMPOTENCY_HEADER} header is required",
                code="missing_idempotency_key",
                param=IDEMPOTENCY_HEADER,
            )
        return idempotency_key

    def _lookup(self, idempotency_key: str, fingerprint: str) -> Optional[StoredResponse]:
        record = self._records.get(idempotency_key)
        if record is None:
            return None

        if record.is_expired(self.clock()):
            del self._records[idempotency_key]
            logger.info("idempotency_record_expired", idempotency_key=idempotency_key)
            return None

        if record.fingerprint != fingerprint:
            metrics.record_idempotency_lookup("conflict")
            logger.warning("idempotency_conflict", idempotency_key=idempotency_key)
            raise IdempotencyConflictError(
                "Keys for idempotent requests can only be used with the same parameters "
                "they were first used with",
                param=IDEMPOTENCY_HEADER,
            )

        return record.response

    def _store(self, idempotency_key: str, fingerprint: str, response: StoredResponse) -> None:
        if idempotency_key in self._records:
            raise RuntimeError(f"Idempotency record for {idempotency_key} already exists")
        now = self.clock()
        self._records[idempotency_key] = IdempotencyRecord(
            key=idempotency_key,
            fingerprint=fingerprint,
            response=response,
            created_at=now,
            expires_at=now + self.ttl,
        )
        logger.info("idempotency_response_cached", idempotency_key=idempotency_key)

    async def execute(
        self,
        idempotency_key: Optional[str],
        operation: str,
        body: Mapping[str, Any],
        handler: Callable[[], Awaitable[StoredResponse]],
    ) -> StoredResponse:
        """
        Run ``handler`` at most once per key.

        Only successful responses are stored: if ``handler`` raises, the
        key stays unused and the error propagates.

        Args:
            idempotency_key: Client-supplied key
            operation: Operation name, including the target resource id
            body: Decoded request body
            handler: Coroutine factory performing the operation

        Returns:
            StoredResponse: The response of the first execution

        Raises:
            MalformedRequestError: If the key is missing
            IdempotencyConflictError: If the key was used with another request
        """
        key = self.require_key(idempotency_key)
        fingerprint = self.fingerprint(operation, body)

        async with self._locks.acquire(key):
            cached = self._lookup(key, fingerprint)
            if cached is not None:
                metrics.record_idempotency_lookup("hit")
                logger.info("idempotency_cache_hit", idempotency_key=key, operation=operation)
                return cached

            metrics.record_idempotency_lookup("miss")
            logger.info("idempotency_cache_miss", idempotency_key=key, operation=operation)

            response = await handler()
            self._store(key, fingerprint, response)
            return response

    def get_record(self, idempotency_key: str) -> Optional[IdempotencyRecord]:
        """Return the live record for a key, treating expired records as absent."""
        record = self._records.get(idempotency_key)
        if record is None or record.is_expired(self.clock()):
            return None
        return record

    def purge_expired(self) -> int:
        """
        Remove every expired record.

        Keys currently being executed are skipped.

        Returns:
            int: Number of records removed
        """
        now = self.clock()
        expired = [
            key
            for key, record in self._records.items()
            if record.is_expired(now) and not self._locks.locked(key)
        ]
        for key in expired:
            del self._records[key]

        metrics.record_idempotency_purge(len(expired))
        if expired:
            logger.info("idempotency_records_purged", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
