import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.cache import MISSING, TTLCache
from core.converters import convert_quantity, normalize_unit
from core.exceptions import InventoryItemNotFound, MenuItemNotFound, RecipeNotFound
from db.inventory import InventoryItem
from db.menu_item import MenuItem
from db.recipe_ingredient import RecipeIngredient
from services.common import read_only, unit_of_work

logger = logging.getLogger("inventory.recipes")

RECIPE_CACHE = "recipe"
QTY_PLACES = Decimal("0.001")


@dataclass(frozen=True)
class OrderLine:
    menu_item_id: UUID
    quantity: int = 1
    size: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class RecipeRow:
    inventory_item_id: UUID
    item_name: str
    item_unit: str
    quantity: Decimal
    unit: str
    tolerance: Decimal
    is_required: bool
    size: Optional[str]


@dataclass
class Requirement:
    inventory_item_id: UUID
    item_name: str
    required: Decimal
    unit: str
    tolerance: Decimal = Decimal("0")
    is_required: bool = True
    from_menu_items: list[dict] = field(default_factory=list)


@dataclass
class ResolvedOrder:
    requirements: list[Requirement]
    per_line: list[tuple[OrderLine, list[Requirement]]]
    untracked: list[OrderLine]

    @property
    def has_ingredient_tracking(self) -> bool:
        return bool(self.requirements)

    @property
    def inventory_item_ids(self) -> list[UUID]:
        return [r.inventory_item_id for r in self.requirements]


class RecipeResolver:
    """Maps (menu item, size, quantity) to the inventory it consumes."""

    def __init__(self, cache: Optional[TTLCache] = None):
        self.cache = cache

    async def _load_rows(self, db: AsyncSession, menu_item_id: UUID, size: Optional[str]) -> tuple[RecipeRow, ...]:
        stmt = (
            select(RecipeIngredient, InventoryItem)
            .join(InventoryItem, InventoryItem.id == RecipeIngredient.inventory_item_id)
            .where(RecipeIngredient.menu_item_id == menu_item_id)
            .order_by(RecipeIngredient.sort_order, RecipeIngredient.id)
        )
        async with read_only(db, "load recipe"):
            res = await db.execute(stmt)
            rows = res.all()

        def _pick(wanted: Optional[str]) -> list:
            return [(ri, it) for ri, it in rows if ri.size == wanted]

        chosen = _pick(size) if size else []
        if not chosen:
            # Sizes without their own rows fall back to the default recipe
            chosen = _pick(None)

        return tuple(
            RecipeRow(
                inventory_item_id=it.id,
                item_name=it.name,
                item_unit=it.unit,
                quantity=Decimal(ri.quantity),
                unit=ri.unit,
                tolerance=Decimal(ri.tolerance if ri.tolerance is not None else 0),
                is_required=bool(ri.is_required),
                size=ri.size,
            )
            for ri, it in chosen
        )

    async def recipe_rows(self, db: AsyncSession, menu_item_id: UUID, size: Optional[str] = None) -> tuple[RecipeRow, ...]:
        size = (size or "").strip().lower() or None
        key = (menu_item_id, size)
        rows = self.cache.get(RECIPE_CACHE, key) if self.cache is not None else MISSING
        if rows is MISSING:
            rows = await self._load_rows(db, menu_item_id, size)
            if self.cache is not None:
                self.cache.set(RECIPE_CACHE, key, rows)
        return rows

    async def resolve(self, db: AsyncSession, menu_item_id: UUID, size: Optional[str], quantity: int) -> list[Requirement]:
        """
        Inventory needed for `quantity` units of a menu item, in each item's own unit.

        Raises `RecipeNotFound` when the item has no recipe (an untracked item).
        """
        rows = await self.recipe_rows(db, menu_item_id, size)
        if not rows:
            raise RecipeNotFound(menu_item_id, size)

        out: list[Requirement] = []
        for row in rows:
            per_unit = convert_quantity(row.quantity, row.unit, row.item_unit)
            out.append(
                Requirement(
                    inventory_item_id=row.inventory_item_id,
                    item_name=row.item_name,
                    required=(per_unit * quantity).quantize(QTY_PLACES),
                    unit=row.item_unit,
                    tolerance=row.tolerance,
                    is_required=row.is_required,
                )
            )
        return out

    async def resolve_order(self, db: AsyncSession, lines: Sequence[OrderLine]) -> ResolvedOrder:
        """Aggregate requirements of every line per inventory item."""
        by_item: dict[UUID, Requirement] = {}
        per_line: list[tuple[OrderLine, list[Requirement]]] = []
        untracked: list[OrderLine] = []

        for line in lines:
            try:
                reqs = await self.resolve(db, line.menu_item_id, line.size, line.quantity)
            except RecipeNotFound as e:
                logger.info("%s; treating as untracked", e)
                untracked.append(line)
                per_line.append((line, []))
                continue

            per_line.append((line, reqs))
            for req in reqs:
                agg = by_item.get(req.inventory_item_id)
                if agg is None:
                    agg = Requirement(
                        inventory_item_id=req.inventory_item_id,
                        item_name=req.item_name,
                        required=Decimal("0"),
                        unit=req.unit,
                        tolerance=req.tolerance,
                        is_required=req.is_required,
                    )
                    by_item[req.inventory_item_id] = agg
                agg.required += req.required
                # Required by any line makes it required for the order
                agg.is_required = agg.is_required or req.is_required
                agg.from_menu_items.append({
                    "menu_item_id": line.menu_item_id,
                    "menu_item_name": line.name,
                    "quantity": line.quantity,
                    "required_amount": req.required,
                })

        requirements = sorted(by_item.values(), key=lambda r: str(r.inventory_item_id))
        return ResolvedOrder(requirements=requirements, per_line=per_line, untracked=untracked)

    # ---- recipe maintenance --------------------------------------------------

    async def get_recipe(self, db: AsyncSession, menu_item_id: UUID) -> list[RecipeIngredient]:
        res = await db.execute(
            select(RecipeIngredient)
            .where(RecipeIngredient.menu_item_id == menu_item_id)
            .order_by(RecipeIngredient.size, RecipeIngredient.sort_order)
        )
        return list(res.scalars().all())

    async def set_recipe(self, db: AsyncSession, menu_item_id: UUID, size: Optional[str], ingredients: Sequence[dict]) -> list[RecipeIngredient]:
        """Replace the recipe of one (menu item, size) pair."""
        size = (size or "").strip().lower() or None
        async with unit_of_work(db, "update recipe"):
            menu_item = await db.get(MenuItem, menu_item_id)
            if not menu_item:
                raise MenuItemNotFound(menu_item_id)

            item_ids = [i["inventory_item_id"] for i in ingredients]
            if item_ids:
                res = await db.execute(select(InventoryItem.id).where(InventoryItem.id.in_(item_ids)))
                found = set(res.scalars().all())
                for item_id in item_ids:
                    if item_id not in found:
                        raise InventoryItemNotFound(item_id)

            size_filter = RecipeIngredient.size.is_(None) if size is None else RecipeIngredient.size == size
            await db.execute(
                delete(RecipeIngredient)
                .where(RecipeIngredient.menu_item_id == menu_item_id, size_filter)
                .execution_options(synchronize_session=False)
            )

            rows = []
            for idx, ing in enumerate(ingredients):
                row = RecipeIngredient(
                    menu_item_id=menu_item_id,
                    size=size,
                    inventory_item_id=ing["inventory_item_id"],
                    quantity=Decimal(str(ing["quantity"])),
                    unit=normalize_unit(ing["unit"]),
                    tolerance=Decimal(str(ing.get("tolerance", 0.1))),
                    is_required=bool(ing.get("is_required", True)),
                    sort_order=idx,
                )
                db.add(row)
                rows.append(row)

        if self.cache is not None:
            self.cache.invalidate(RECIPE_CACHE)
        logger.info("Recipe for menu item %s (size %s) set with %d ingredients", menu_item_id, size or "default", len(rows))
        return rows
