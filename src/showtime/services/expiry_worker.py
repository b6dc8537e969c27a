"""
Background worker that expires bookings left unpaid past their deadline
"""
import asyncio
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from showtime.core.config import settings
from showtime.core.database import AsyncSessionLocal
from showtime.services.booking_state_machine import BookingStateMachine

logger = logging.getLogger(__name__)


class ExpiryWorker:
    """Periodic sweep over CREATED / AWAITING_PAYMENT bookings"""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        state_machine: Optional[BookingStateMachine] = None,
        interval_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.state_machine = state_machine or BookingStateMachine()
        self.interval = interval_seconds or settings.EXPIRY_CHECK_INTERVAL_SECONDS
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the background worker"""
        if self.running:
            logger.warning("Expiry worker already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info(f"Expiry worker started (interval: {self.interval}s)")

    async def stop(self):
        """Stop the background worker"""
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("Expiry worker stopped")

    async def _run(self):
        while self.running:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in expiry worker")
            await asyncio.sleep(self.interval)

    async def sweep(self) -> List[str]:
        """Expire every overdue booking once; returns the expired ids"""
        async with self.session_factory() as db:
            expired = await self.state_machine.expire_overdue(db)
        if expired:
            logger.info(f"Expired {len(expired)} bookings")
        return expired


# Global worker instance
expiry_worker = ExpiryWorker()


async def start_expiry_worker():
    await expiry_worker.start()


async def stop_expiry_worker():
    await expiry_worker.stop()
