"""
Cache service for show seat maps
"""
import logging
from typing import Any, Dict, Optional

from showtime.core.config import settings
from showtime.core.redis import redis_client

logger = logging.getLogger(__name__)


class CacheService:
    """Cache keys and invalidation for per-show occupancy"""

    SHOW_SEATS_KEY = "show:{show_id}:seats"

    @staticmethod
    async def get_show_seats(show_id: int) -> Optional[Dict[str, Any]]:
        """Get cached occupancy"""
        key = CacheService.SHOW_SEATS_KEY.format(show_id=show_id)
        return await redis_client.get(key)

    @staticmethod
    async def set_show_seats(show_id: int, data: Dict[str, Any]) -> bool:
        """Cache occupancy (short TTL, volatile data)"""
        key = CacheService.SHOW_SEATS_KEY.format(show_id=show_id)
        return await redis_client.set(key, data, ttl=settings.REDIS_CACHE_TTL)

    @staticmethod
    async def invalidate_show_seats(show_id: int) -> bool:
        """Drop the cached occupancy after any ledger mutation"""
        key = CacheService.SHOW_SEATS_KEY.format(show_id=show_id)
        return await redis_client.delete(key)
