"""
Idempotency keys for booking creation
Handles client retries and double submits
"""
import hashlib
import json
import logging
import time
from typing import Any, Optional

from showtime.core.config import settings
from showtime.core.redis import redis_client

logger = logging.getLogger(__name__)


class IdempotencyService:
    """
    Remembers the response of a reservation request so a retried request
    with the same X-Idempotency-Key replays it
    instead of creating a second booking.
    """

    def __init__(self, ttl: Optional[int] = None):
        self.redis = redis_client
        self.ttl = ttl or settings.IDEMPOTENCY_TTL_SECONDS

    def generate_key(self, user_id: str, operation: str, params: dict) -> str:
        """SHA256 of user, operation and sorted parameters"""
        key_data = {
            "user_id": user_id,
            "operation": operation,
            "params": sorted(params.items()),
        }
        key_string = json.dumps(key_data, sort_keys=True)
        hash_key = hashlib.sha256(key_string.encode()).hexdigest()
        return f"idempotency:{operation}:{hash_key}"

    async def check_operation(self, idempotency_key: str) -> Optional[dict]:
        """Previous result, or None if the operation is new"""
        result = await self.redis.get(idempotency_key)
        if result:
            logger.info(f"Idempotent replay: {idempotency_key}")
        return result

    async def store_result(self, idempotency_key: str, result: Any):
        await self.redis.set(idempotency_key, result, ttl=self.ttl)

    async def lock_operation(self, idempotency_key: str, ttl: int = 30) -> bool:
        """
        Acquire lock for an operation in progress

        Returns:
            True if lock acquired, False if the same operation is running
        """
        return await self.redis.set_if_absent(f"{idempotency_key}:lock", str(time.time()), ttl)

    async def release_lock(self, idempotency_key: str):
        await self.redis.delete(f"{idempotency_key}:lock")


# Global instance
idempotency_service = IdempotencyService()
