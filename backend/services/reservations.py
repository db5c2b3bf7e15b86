"""
Reservation Manager.

A reservation is a temporary hold on inventory for an in-flight order:

    ACTIVE -> COMMITTED   stock deducted for good (order completed)
    ACTIVE -> RELEASED    hold dropped (order cancelled)
    ACTIVE -> EXPIRED     hold dropped once `expires_at` passes (by the sweeper,
                          or by a commit or re-reserve that finds it overdue)

Every mutation runs under the order's lock plus the locks of every inventory
item it touches (acquired together, sorted), inside one transaction. `reserve`
re-checks free stock under those locks and places all holds or none.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import InsufficientStock, InvalidState, InventoryError, PersistenceUnavailable, ReservationNotFound
from core.locks import KeyedLocks, item_key, order_key
from db.reservation import (
    ACTIVE,
    COMMITTED,
    EXPIRED,
    RELEASED,
    RESERVATION_STATUSES,
    InventoryReservation,
    ReservationLine,
)
from services.common import read_only, unit_of_work, utcnow
from services.recipe_resolver import OrderLine, RecipeResolver
from services.stock_ledger import StockLedger

logger = logging.getLogger("inventory.reservations")

DEFAULT_TTL_MINUTES = 15


@dataclass
class ReserveOutcome:
    reservation: InventoryReservation
    created: bool
    untracked: list[OrderLine] = field(default_factory=list)
    skipped_optional: list[dict] = field(default_factory=list)

    @property
    def has_ingredient_tracking(self) -> bool:
        return bool(self.reservation.lines)


class ReservationManager:
    def __init__(
        self,
        ledger: StockLedger,
        resolver: RecipeResolver,
        locks: KeyedLocks,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.locks = locks
        self.ttl_minutes = ttl_minutes
        self.clock = clock

    # ---- reads ---------------------------------------------------------------

    async def _load(self, db: AsyncSession, reservation_id: UUID, *, for_update: bool = False) -> InventoryReservation:
        stmt = (
            select(InventoryReservation)
            .where(InventoryReservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        res = await db.execute(stmt)
        reservation = res.scalar_one_or_none()
        if not reservation:
            raise ReservationNotFound(reservation_id)
        return reservation

    async def _active_for_order(self, db: AsyncSession, order_id: str) -> Optional[InventoryReservation]:
        res = await db.execute(
            select(InventoryReservation)
            .where(InventoryReservation.order_id == order_id, InventoryReservation.status == ACTIVE)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def get(self, db: AsyncSession, reservation_id: UUID) -> InventoryReservation:
        async with read_only(db, "load reservation"):
            return await self._load(db, reservation_id)

    async def list_reservations(
        self, db: AsyncSession, status: Optional[str] = None, limit: int = 100
    ) -> tuple[list[InventoryReservation], dict[str, int]]:
        """Most recent reservations first, plus a count per status over all reservations."""
        stmt = select(InventoryReservation).order_by(InventoryReservation.created_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(InventoryReservation.status == status.upper())
        async with read_only(db, "list reservations"):
            reservations = list((await db.execute(stmt)).scalars().all())
            counts = await db.execute(
                select(InventoryReservation.status, func.count()).group_by(InventoryReservation.status)
            )
            by_status = {s: int(n) for s, n in counts.all()}

        summary = {s.lower(): by_status.get(s, 0) for s in RESERVATION_STATUSES}
        summary["total"] = sum(by_status.values())
        return reservations, summary

    # ---- reserve -------------------------------------------------------------

    async def reserve(
        self,
        db: AsyncSession,
        order_id: str,
        lines: Sequence[OrderLine],
        *,
        reserved_by: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ReserveOutcome:
        """
        Hold the inventory an order needs.

        All-or-nothing: if any required ingredient is short, `InsufficientStock`
        is raised listing every shortage and nothing is held. Reserving an order
        that already has a live ACTIVE reservation returns that reservation; one
        past its expiry is expired first and a new reservation is made.
        """
        order_id = (order_id or "").strip()
        if not order_id:
            raise InventoryError("orderId is required")
        if not lines:
            raise InventoryError("At least one order line is required")

        resolved = await self.resolver.resolve_order(db, lines)
        keys = {order_key(order_id), *(item_key(i) for i in resolved.inventory_item_ids)}
        ttl = self.ttl_minutes if ttl_minutes is None else ttl_minutes

        try:
            while True:
                async with self.locks.acquire(*keys):
                    async with unit_of_work(db, "reserve inventory"):
                        now = self.clock()
                        existing = await self._active_for_order(db, order_id)
                        if existing is not None and not existing.is_expired(now):
                            logger.info("Order %s already holds reservation %s", order_id, existing.id)
                            return ReserveOutcome(reservation=existing, created=False, untracked=resolved.untracked)

                        if existing is not None:
                            # Dropping its holds needs the locks of its own items too
                            missing = set(self._lock_keys(existing)) - keys
                            if missing:
                                keys |= missing
                                continue
                            await self._drop_holds(db, existing, status=EXPIRED, reason="Expired before the order was reserved again")
                            await db.flush()
                            logger.info("Reservation %s of order %s expired on re-reserve", existing.id, order_id)

                        # Fresh read under the locks; the advisory check may be stale by now
                        levels = await self.ledger.get_levels(db, resolved.inventory_item_ids)
                        shortages = []
                        to_hold = []
                        skipped = []
                        for req in resolved.requirements:
                            free = levels[req.inventory_item_id].free
                            if free >= req.required:
                                to_hold.append(req)
                            elif req.is_required:
                                shortages.extend(
                                    InsufficientStock.for_item(req.inventory_item_id, req.item_name, req.required, free).shortages
                                )
                            else:
                                skipped.append({"inventory_item_id": req.inventory_item_id, "name": req.item_name})

                        if shortages:
                            if existing is not None:
                                # The old reservation stays expired even though the new hold fails
                                await db.commit()
                            names = ", ".join(s["name"] or s["inventory_item_id"] for s in shortages)
                            raise InsufficientStock(f"Insufficient stock for order {order_id}: {names}", shortages=shortages)

                        reservation = InventoryReservation(
                            order_id=order_id,
                            status=ACTIVE,
                            reserved_by=reserved_by,
                            notes=notes,
                            created_at=now,
                            updated_at=now,
                            expires_at=now + timedelta(minutes=ttl),
                            lines=[],
                        )
                        db.add(reservation)
                        await db.flush()

                        for req in to_hold:
                            await self.ledger.hold(
                                db,
                                req.inventory_item_id,
                                req.required,
                                name=req.item_name,
                                source_id=reservation.id,
                                reason=f"Reserved for order {order_id}",
                            )
                            reservation.lines.append(
                                ReservationLine(
                                    inventory_item_id=req.inventory_item_id,
                                    quantity_held=req.required,
                                    unit=req.unit,
                                )
                            )
                break
        except IntegrityError:
            # Another process won the race for this order's single ACTIVE slot
            async with read_only(db, "load reservation"):
                existing = await self._active_for_order(db, order_id)
            if existing is None:
                raise
            return ReserveOutcome(reservation=existing, created=False, untracked=resolved.untracked)

        logger.info(
            "Reservation %s created for order %s: %d lines, expires %s",
            reservation.id, order_id, len(reservation.lines), reservation.expires_at.isoformat(),
        )
        return ReserveOutcome(reservation=reservation, created=True, untracked=resolved.untracked, skipped_optional=skipped)

    # ---- transitions ---------------------------------------------------------

    def _lock_keys(self, reservation: InventoryReservation) -> list[str]:
        return [order_key(reservation.order_id)] + [item_key(line.inventory_item_id) for line in reservation.lines]

    async def _drop_holds(self, db: AsyncSession, reservation: InventoryReservation, *, status: str, reason: str) -> None:
        source_type = "expiry" if status == EXPIRED else "release"
        for line in reservation.lines:
            await self.ledger.unhold(
                db,
                line.inventory_item_id,
                line.quantity_held,
                source_type=source_type,
                source_id=reservation.id,
                reason=reason,
            )
        reservation.status = status
        reservation.updated_at = self.clock()
        reservation.notes = f"{reservation.notes or ''}\n{status.title()}: {reason}".strip()

    async def commit(self, db: AsyncSession, reservation_id: UUID) -> InventoryReservation:
        """Convert the holds into permanent stock deductions."""
        async with read_only(db, "load reservation"):
            reservation = await self._load(db, reservation_id)

        expired = False
        async with self.locks.acquire(*self._lock_keys(reservation)):
            async with unit_of_work(db, "commit reservation"):
                reservation = await self._load(db, reservation_id, for_update=True)
                if reservation.status != ACTIVE:
                    raise InvalidState(
                        f"Cannot commit reservation with status: {reservation.status}", reservation.status
                    )
                now = self.clock()
                if reservation.is_expired(now):
                    await self._drop_holds(db, reservation, status=EXPIRED, reason="Expired before commit")
                    expired = True
                else:
                    for line in reservation.lines:
                        await self.ledger.consume(
                            db,
                            line.inventory_item_id,
                            line.quantity_held,
                            source_id=reservation.id,
                            reason=f"Consumed for completed order {reservation.order_id}",
                        )
                    reservation.status = COMMITTED
                    reservation.updated_at = now

        if expired:
            logger.info("Reservation %s expired before commit", reservation_id)
            raise InvalidState("Reservation has expired", EXPIRED)
        logger.info("Reservation %s committed for order %s", reservation.id, reservation.order_id)
        return reservation

    async def release(self, db: AsyncSession, reservation_id: UUID, reason: str = "Manual release") -> InventoryReservation:
        """Drop the holds without deducting stock. Releasing twice is a no-op."""
        async with read_only(db, "load reservation"):
            reservation = await self._load(db, reservation_id)

        async with self.locks.acquire(*self._lock_keys(reservation)):
            async with unit_of_work(db, "release reservation"):
                reservation = await self._load(db, reservation_id, for_update=True)
                if reservation.status in (RELEASED, EXPIRED):
                    return reservation
                if reservation.status == COMMITTED:
                    raise InvalidState("Cannot release a committed reservation", COMMITTED)
                await self._drop_holds(db, reservation, status=RELEASED, reason=reason)

        logger.info("Reservation %s released: %s", reservation.id, reason)
        return reservation

    async def extend(self, db: AsyncSession, reservation_id: UUID, additional_minutes: int) -> InventoryReservation:
        if additional_minutes <= 0:
            raise InventoryError("additional minutes must be > 0")
        async with read_only(db, "load reservation"):
            reservation = await self._load(db, reservation_id)

        async with self.locks.acquire(order_key(reservation.order_id)):
            async with unit_of_work(db, "extend reservation"):
                reservation = await self._load(db, reservation_id, for_update=True)
                if reservation.status != ACTIVE:
                    raise InvalidState(
                        f"Cannot extend reservation with status: {reservation.status}", reservation.status
                    )
                if reservation.is_expired(self.clock()):
                    raise InvalidState("Reservation has expired", reservation.status)
                reservation.expires_at = reservation.expires_at + timedelta(minutes=additional_minutes)
                reservation.updated_at = self.clock()

        logger.info("Reservation %s extended by %d minutes", reservation.id, additional_minutes)
        return reservation

    # ---- expiry --------------------------------------------------------------

    async def expire_if_due(self, db: AsyncSession, reservation_id: UUID) -> bool:
        async with read_only(db, "load reservation"):
            reservation = await self._load(db, reservation_id)

        async with self.locks.acquire(*self._lock_keys(reservation)):
            async with unit_of_work(db, "expire reservation"):
                reservation = await self._load(db, reservation_id, for_update=True)
                if reservation.status != ACTIVE or not reservation.is_expired(self.clock()):
                    return False
                await self._drop_holds(db, reservation, status=EXPIRED, reason="Automatic cleanup - reservation expired")
        return True

    async def sweep_expired(self, session_maker: async_sessionmaker[AsyncSession]) -> int:
        """Expire every ACTIVE reservation past its expiry; returns how many were expired."""
        async with session_maker() as db:
            async with read_only(db, "find expired reservations"):
                res = await db.execute(
                    select(InventoryReservation.id)
                    .where(InventoryReservation.status == ACTIVE, InventoryReservation.expires_at <= self.clock())
                    .order_by(InventoryReservation.expires_at)
                )
                due = list(res.scalars().all())

        expired = 0
        for reservation_id in due:
            async with session_maker() as db:
                try:
                    if await self.expire_if_due(db, reservation_id):
                        expired += 1
                except PersistenceUnavailable:
                    raise
                except InventoryError as e:
                    logger.error("Could not expire reservation %s: %s", reservation_id, e)

        if expired:
            logger.info("Expired %d of %d overdue reservations", expired, len(due))
        return expired
