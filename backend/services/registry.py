from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.cache import TTLCache
from core.config import settings
from core.locks import KeyedLocks
from services.availability import AvailabilityChecker
from services.common import utcnow
from services.expiry_sweeper import ExpirySweeper
from services.recipe_resolver import RecipeResolver
from services.reservations import ReservationManager
from services.stock_ledger import StockLedger


@dataclass
class InventoryServices:
    cache: TTLCache
    locks: KeyedLocks
    ledger: StockLedger
    resolver: RecipeResolver
    availability: AvailabilityChecker
    reservations: ReservationManager
    sweeper: ExpirySweeper


def build_services(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    ttl_minutes: Optional[int] = None,
    cache_ttl_seconds: Optional[float] = None,
    sweep_interval_seconds: Optional[float] = None,
    clock: Callable[[], datetime] = utcnow,
) -> InventoryServices:
    """Wire one set of services sharing a lock registry and cache (one per app)."""
    cache = TTLCache(settings.cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds)
    locks = KeyedLocks()
    ledger = StockLedger(locks)
    resolver = RecipeResolver(cache)
    reservations = ReservationManager(
        ledger,
        resolver,
        locks,
        ttl_minutes=settings.reservation_ttl_minutes if ttl_minutes is None else ttl_minutes,
        clock=clock,
    )
    sweeper = ExpirySweeper(
        reservations,
        session_maker,
        interval_seconds=(
            settings.reservation_sweep_interval_seconds if sweep_interval_seconds is None else sweep_interval_seconds
        ),
    )
    return InventoryServices(
        cache=cache,
        locks=locks,
        ledger=ledger,
        resolver=resolver,
        availability=AvailabilityChecker(resolver, ledger),
        reservations=reservations,
        sweeper=sweeper,
    )
