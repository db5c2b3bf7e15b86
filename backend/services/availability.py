"""
Availability Checker.

Read-only and lock-free: it compares requirements with the free stock it
reads at that moment. The answer is advice for the UI; `reserve` re-checks
under the item locks and is the only thing that claims stock.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from services.recipe_resolver import OrderLine, RecipeResolver
from services.stock_ledger import StockLedger

logger = logging.getLogger("inventory.availability")


@dataclass
class IngredientCheck:
    inventory_item_id: UUID
    name: str
    unit: str
    required: Decimal
    available: Decimal
    is_required: bool
    used_in: list[dict] = field(default_factory=list)

    @property
    def sufficient(self) -> bool:
        return self.available >= self.required

    @property
    def shortage(self) -> Decimal:
        return max(Decimal("0"), self.required - self.available)


@dataclass
class LineAvailability:
    menu_item_id: UUID
    quantity: int
    size: Optional[str]
    is_available: bool
    has_ingredient_tracking: bool


@dataclass
class AvailabilityResult:
    is_available: bool
    has_ingredient_tracking: bool
    ingredients: list[IngredientCheck]
    lines: list[LineAvailability]

    @property
    def insufficient(self) -> list[IngredientCheck]:
        return [c for c in self.ingredients if c.is_required and not c.sufficient]


class AvailabilityChecker:
    def __init__(self, resolver: RecipeResolver, ledger: StockLedger):
        self.resolver = resolver
        self.ledger = ledger

    async def check_availability(self, db: AsyncSession, lines: Sequence[OrderLine]) -> AvailabilityResult:
        resolved = await self.resolver.resolve_order(db, lines)
        levels = await self.ledger.get_levels(db, resolved.inventory_item_ids)

        checks = [
            IngredientCheck(
                inventory_item_id=req.inventory_item_id,
                name=req.item_name,
                unit=req.unit,
                required=req.required,
                available=levels[req.inventory_item_id].free,
                is_required=req.is_required,
                used_in=req.from_menu_items,
            )
            for req in resolved.requirements
        ]

        line_results = []
        for line, reqs in resolved.per_line:
            ok = all(
                levels[r.inventory_item_id].free >= r.required
                for r in reqs
                if r.is_required
            )
            line_results.append(
                LineAvailability(
                    menu_item_id=line.menu_item_id,
                    quantity=line.quantity,
                    size=line.size,
                    is_available=ok,
                    has_ingredient_tracking=bool(reqs),
                )
            )

        result = AvailabilityResult(
            is_available=not any(c.is_required and not c.sufficient for c in checks),
            has_ingredient_tracking=resolved.has_ingredient_tracking,
            ingredients=checks,
            lines=line_results,
        )
        if not result.is_available:
            logger.info(
                "Order not available, short on: %s",
                ", ".join(f"{c.name} ({c.shortage} {c.unit})" for c in result.insufficient),
            )
        return result
