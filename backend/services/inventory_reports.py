from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.inventory import InventoryItem, InventoryMovement, InventoryStock
from db.recipe_ingredient import RecipeIngredient
from services.common import read_only, utcnow

PRIORITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}
RESTOCK_FACTOR = 3
REPORT_MOVEMENT_LIMIT = 50


def _money(x: Decimal) -> float:
    return float(Decimal(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


async def _items_with_levels(db: AsyncSession):
    res = await db.execute(
        select(InventoryItem, InventoryStock)
        .outerjoin(InventoryStock, InventoryStock.inventory_item_id == InventoryItem.id)
        .where(InventoryItem.is_active.is_(True))
        .order_by(InventoryItem.name)
    )
    return res.all()


async def generate_alerts(db: AsyncSession) -> dict:
    """
    Low-stock and restock alerts for active items.

    low_stock: free stock at or below min_level (critical once it hits zero).
    restock_needed: free stock at or below 3x min_level but above it.
    """
    async with read_only(db, "generate inventory alerts"):
        rows = await _items_with_levels(db)
        usage = await db.execute(
            select(RecipeIngredient.inventory_item_id, func.count(func.distinct(RecipeIngredient.menu_item_id)))
            .group_by(RecipeIngredient.inventory_item_id)
        )
        affected = {item_id: int(n) for item_id, n in usage.all()}

    alerts = []
    for item, stock in rows:
        quantity = Decimal(stock.quantity) if stock else Decimal("0")
        reserved = Decimal(stock.reserved_quantity) if stock else Decimal("0")
        free = max(Decimal("0"), quantity - reserved)
        min_level = Decimal(item.min_level or 0)

        base = {
            "inventory_item_id": item.id,
            "name": item.name,
            "unit": item.unit,
            "total_stock": float(quantity),
            "reserved_quantity": float(reserved),
            "available_stock": float(free),
            "threshold": float(min_level),
            "affected_menu_items": affected.get(item.id, 0),
        }
        if free <= min_level:
            alerts.append({
                **base,
                "type": "low_stock",
                "priority": "critical" if free <= 0 else "high",
                "recommendation": "Restock immediately",
            })
        elif free <= min_level * RESTOCK_FACTOR:
            alerts.append({
                **base,
                "type": "restock_needed",
                "priority": "medium",
                "recommendation": "Schedule restock within 3 days",
            })

    alerts.sort(key=lambda a: (-PRIORITY_ORDER[a["priority"]], -a["affected_menu_items"], a["available_stock"]))
    return {
        "alerts": alerts,
        "summary": {
            "total": len(alerts),
            "critical": sum(1 for a in alerts if a["priority"] == "critical"),
            "high": sum(1 for a in alerts if a["priority"] == "high"),
            "medium": sum(1 for a in alerts if a["priority"] == "medium"),
        },
        "last_updated": utcnow(),
    }


async def generate_report(
    db: AsyncSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    report_type: str = "comprehensive",
) -> dict:
    end_date = end_date or utcnow()
    start_date = start_date or (end_date - timedelta(days=30))

    async with read_only(db, "generate inventory report"):
        rows = await _items_with_levels(db)
        mres = await db.execute(
            select(InventoryMovement, InventoryItem.name)
            .join(InventoryItem, InventoryItem.id == InventoryMovement.inventory_item_id)
            .where(InventoryMovement.created_at >= start_date, InventoryMovement.created_at <= end_date)
            .order_by(InventoryMovement.created_at.desc())
        )
        movements = mres.all()

    items = []
    total_value = Decimal("0")
    low = 0
    for item, stock in rows:
        quantity = Decimal(stock.quantity) if stock else Decimal("0")
        reserved = Decimal(stock.reserved_quantity) if stock else Decimal("0")
        value = quantity * Decimal(item.unit_cost or 0)
        total_value += value
        is_low = quantity - reserved <= Decimal(item.min_level or 0)
        low += int(is_low)
        items.append({
            "id": item.id,
            "name": item.name,
            "unit": item.unit,
            "current_stock": float(quantity),
            "reserved_quantity": float(reserved),
            "unit_cost": float(item.unit_cost or 0),
            "value": _money(value),
            "stock_level": "low" if is_low else "normal",
        })

    return {
        "report_type": report_type,
        "date_range": {"start_date": start_date, "end_date": end_date},
        "summary": {
            "total_items": len(items),
            "low_stock_items": low,
            "total_value": _money(total_value),
            "adjustments_count": len(movements),
        },
        "items": items,
        "adjustments": [
            {
                "id": m.id,
                "inventory_item_id": m.inventory_item_id,
                "name": name,
                "change": float(m.change),
                "reserved_change": float(m.reserved_change),
                "reason": m.reason,
                "source_type": m.source_type,
                "source_id": m.source_id,
                "created_at": m.created_at,
            }
            for m, name in movements[:REPORT_MOVEMENT_LIMIT]
        ],
        "generated_at": utcnow(),
    }
