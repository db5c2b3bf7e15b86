"""
Stock Ledger: on-hand quantity and reservation holds per inventory item.

Every write is a single conditional UPDATE on the item's `inventory_stock` row,
so the database refuses an overdraw even if two processes race. Within one
process the caller also holds the item's lock from `KeyedLocks` (public
`adjust` takes it itself; the hold/unhold/consume primitives expect the
Reservation Manager to hold it and to own the transaction).
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import InsufficientStock, InvalidState, InventoryItemNotFound
from core.locks import KeyedLocks, item_key
from db.inventory import InventoryItem, InventoryMovement, InventoryStock
from services.common import read_only, unit_of_work

logger = logging.getLogger("inventory.ledger")

ZERO = Decimal("0")


@dataclass(frozen=True)
class StockLevel:
    inventory_item_id: UUID
    quantity: Decimal
    reserved: Decimal

    @property
    def free(self) -> Decimal:
        return max(ZERO, self.quantity - self.reserved)


@dataclass
class ItemHistory:
    item: InventoryItem
    movements: list[InventoryMovement]
    total_records: int
    by_source: list[dict]


def _dec(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


class StockLedger:
    def __init__(self, locks: KeyedLocks):
        self.locks = locks

    # ---- reads ---------------------------------------------------------------

    async def get_item(self, db: AsyncSession, inventory_item_id: UUID) -> InventoryItem:
        res = await db.execute(select(InventoryItem).where(InventoryItem.id == inventory_item_id))
        item = res.scalar_one_or_none()
        if not item:
            raise InventoryItemNotFound(inventory_item_id)
        return item

    async def get_levels(self, db: AsyncSession, inventory_item_ids: Iterable[UUID]) -> dict[UUID, StockLevel]:
        """Current levels for the given items; items without a stock row read as zero."""
        ids = list(dict.fromkeys(inventory_item_ids))
        if not ids:
            return {}
        async with read_only(db, "read stock levels"):
            res = await db.execute(
                select(InventoryStock.inventory_item_id, InventoryStock.quantity, InventoryStock.reserved_quantity)
                .where(InventoryStock.inventory_item_id.in_(ids))
            )
            rows = {r.inventory_item_id: r for r in res.all()}
        out: dict[UUID, StockLevel] = {}
        for item_id in ids:
            r = rows.get(item_id)
            out[item_id] = StockLevel(
                inventory_item_id=item_id,
                quantity=_dec(r.quantity) if r else ZERO,
                reserved=_dec(r.reserved_quantity) if r else ZERO,
            )
        return out

    async def get_level(self, db: AsyncSession, inventory_item_id: UUID) -> StockLevel:
        await self.get_item(db, inventory_item_id)
        return (await self.get_levels(db, [inventory_item_id]))[inventory_item_id]

    async def get_stock(self, db: AsyncSession, inventory_item_id: UUID) -> Decimal:
        """On-hand quantity (committed consumption already deducted)."""
        return (await self.get_level(db, inventory_item_id)).quantity

    async def get_free_stock(self, db: AsyncSession, inventory_item_id: UUID) -> Decimal:
        """On-hand quantity minus everything held by ACTIVE reservations."""
        return (await self.get_level(db, inventory_item_id)).free

    async def get_history(
        self,
        db: AsyncSession,
        inventory_item_id: UUID,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> ItemHistory:
        """
        Movements of one item, newest first, optionally within [start, end].

        `by_source` totals every movement in the range per source type, not
        only the `limit` most recent ones.
        """
        filters = [InventoryMovement.inventory_item_id == inventory_item_id]
        if start is not None:
            filters.append(InventoryMovement.created_at >= start)
        if end is not None:
            filters.append(InventoryMovement.created_at <= end)

        async with read_only(db, "read stock history"):
            item = await self.get_item(db, inventory_item_id)
            res = await db.execute(
                select(InventoryMovement)
                .where(*filters)
                .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id)
                .limit(limit)
            )
            movements = list(res.scalars().all())
            res = await db.execute(
                select(
                    InventoryMovement.source_type,
                    func.count(),
                    func.sum(InventoryMovement.change),
                    func.sum(InventoryMovement.reserved_change),
                )
                .where(*filters)
                .group_by(InventoryMovement.source_type)
                .order_by(InventoryMovement.source_type)
            )
            by_source = [
                {"source_type": source, "count": int(n), "change": _dec(change), "reserved_change": _dec(reserved)}
                for source, n, change, reserved in res.all()
            ]

        return ItemHistory(
            item=item,
            movements=movements,
            total_records=sum(s["count"] for s in by_source),
            by_source=by_source,
        )

    # ---- public write --------------------------------------------------------

    async def open_item(self, db: AsyncSession, item: InventoryItem, opening_quantity: Decimal = ZERO, *,
                        reason: str = "Opening stock") -> StockLevel:
        """Insert a new item together with its stock row and opening movement, all or nothing."""
        opening_quantity = _dec(opening_quantity)
        if item.id is None:
            item.id = uuid4()
        async with self.locks.acquire(item_key(item.id)):
            async with unit_of_work(db, "create inventory item"):
                db.add(item)
                await db.flush()
                db.add(InventoryStock(inventory_item_id=item.id, quantity=opening_quantity, reserved_quantity=ZERO))
                if opening_quantity > 0:
                    self._record(db, item.id, change=opening_quantity, reserved_change=ZERO,
                                 reason=reason, source_type="manual", source_id=None)

        logger.info("Created %s with %s %s on hand", item.name, opening_quantity, item.unit)
        return StockLevel(inventory_item_id=item.id, quantity=opening_quantity, reserved=ZERO)

    async def adjust(
        self,
        db: AsyncSession,
        inventory_item_id: UUID,
        delta: Decimal,
        *,
        reason: Optional[str] = None,
        source_type: str = "manual",
        source_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Add `delta` (negative to remove) to on-hand stock and return the new quantity.

        Fails with `InsufficientStock` when the result would be negative or would
        no longer cover the quantity held by ACTIVE reservations.
        """
        delta = _dec(delta)
        async with self.locks.acquire(item_key(inventory_item_id)):
            async with unit_of_work(db, "adjust stock"):
                item = await self.get_item(db, inventory_item_id)
                await self._ensure_stock_row(db, inventory_item_id)

                res = await db.execute(
                    update(InventoryStock)
                    .where(
                        InventoryStock.inventory_item_id == inventory_item_id,
                        InventoryStock.quantity + delta >= InventoryStock.reserved_quantity,
                        InventoryStock.quantity + delta >= 0,
                    )
                    .values(quantity=InventoryStock.quantity + delta)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    level = (await self.get_levels(db, [inventory_item_id]))[inventory_item_id]
                    raise InsufficientStock.for_item(inventory_item_id, item.name, -delta, level.free)

                self._record(db, inventory_item_id, change=delta, reserved_change=ZERO,
                             reason=reason, source_type=source_type, source_id=source_id)
                level = (await self.get_levels(db, [inventory_item_id]))[inventory_item_id]

        logger.info("Adjusted %s by %s -> %s", item.name, delta, level.quantity)
        return level.quantity

    # ---- primitives (caller holds the item lock and owns the transaction) ----

    async def hold(self, db: AsyncSession, inventory_item_id: UUID, qty: Decimal, *,
                   name: Optional[str] = None, source_id: Optional[UUID] = None, reason: Optional[str] = None) -> None:
        qty = _dec(qty)
        res = await db.execute(
            update(InventoryStock)
            .where(
                InventoryStock.inventory_item_id == inventory_item_id,
                InventoryStock.quantity - InventoryStock.reserved_quantity >= qty,
            )
            .values(reserved_quantity=InventoryStock.reserved_quantity + qty)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            level = (await self.get_levels(db, [inventory_item_id]))[inventory_item_id]
            raise InsufficientStock.for_item(inventory_item_id, name, qty, level.free)
        self._record(db, inventory_item_id, change=ZERO, reserved_change=qty,
                     reason=reason, source_type="reservation", source_id=source_id)

    async def unhold(self, db: AsyncSession, inventory_item_id: UUID, qty: Decimal, *,
                     source_type: str = "release", source_id: Optional[UUID] = None, reason: Optional[str] = None) -> None:
        qty = _dec(qty)
        res = await db.execute(
            update(InventoryStock)
            .where(
                InventoryStock.inventory_item_id == inventory_item_id,
                InventoryStock.reserved_quantity >= qty,
            )
            .values(reserved_quantity=InventoryStock.reserved_quantity - qty)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InvalidState(f"Hold of {qty} on item {inventory_item_id} is not present in the ledger")
        self._record(db, inventory_item_id, change=ZERO, reserved_change=-qty,
                     reason=reason, source_type=source_type, source_id=source_id)

    async def consume(self, db: AsyncSession, inventory_item_id: UUID, qty: Decimal, *,
                      source_id: Optional[UUID] = None, reason: Optional[str] = None) -> None:
        """Turn a hold into a permanent deduction."""
        qty = _dec(qty)
        res = await db.execute(
            update(InventoryStock)
            .where(
                InventoryStock.inventory_item_id == inventory_item_id,
                InventoryStock.reserved_quantity >= qty,
                InventoryStock.quantity >= qty,
            )
            .values(
                quantity=InventoryStock.quantity - qty,
                reserved_quantity=InventoryStock.reserved_quantity - qty,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InvalidState(f"Hold of {qty} on item {inventory_item_id} is not present in the ledger")
        self._record(db, inventory_item_id, change=-qty, reserved_change=-qty,
                     reason=reason, source_type="commit", source_id=source_id)

    # ---- helpers -------------------------------------------------------------

    async def _ensure_stock_row(self, db: AsyncSession, inventory_item_id: UUID) -> None:
        res = await db.execute(select(InventoryStock.id).where(InventoryStock.inventory_item_id == inventory_item_id))
        if res.scalar_one_or_none() is None:
            db.add(InventoryStock(inventory_item_id=inventory_item_id, quantity=ZERO, reserved_quantity=ZERO))
            await db.flush()

    @staticmethod
    def _record(db: AsyncSession, inventory_item_id: UUID, *, change: Decimal, reserved_change: Decimal,
                reason: Optional[str], source_type: str, source_id: Optional[UUID]) -> None:
        db.add(
            InventoryMovement(
                inventory_item_id=inventory_item_id,
                change=change,
                reserved_change=reserved_change,
                reason=reason,
                source_type=source_type,
                source_id=source_id,
            )
        )
