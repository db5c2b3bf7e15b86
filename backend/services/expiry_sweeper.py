import asyncio
import contextlib
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.reservations import ReservationManager

logger = logging.getLogger("inventory.sweeper")


class ExpirySweeper:
    """
    Background task that expires abandoned reservations.

    Runs in the API's event loop (started from the FastAPI lifespan) and
    calls `ReservationManager.sweep_expired` every `interval_seconds`.
    """

    def __init__(
        self,
        manager: ReservationManager,
        session_maker: async_sessionmaker[AsyncSession],
        interval_seconds: float = 60.0,
    ):
        self.manager = manager
        self.session_maker = session_maker
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        return await self.manager.sweep_expired(self.session_maker)

    async def _loop(self) -> None:
        logger.info("Reservation sweeper started. Interval: %ss", self.interval_seconds)
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Reservation sweep failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="reservation-expiry-sweeper")

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Reservation sweeper stopped")
