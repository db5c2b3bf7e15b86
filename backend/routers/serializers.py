from datetime import datetime

from db.inventory import InventoryItem
from db.reservation import InventoryReservation
from services.availability import AvailabilityResult
from services.stock_ledger import StockLevel


def inventory_item_out(item: InventoryItem, level: StockLevel) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "category": item.category,
        "unit": item.unit,
        "is_active": bool(item.is_active),
        "min_level": float(item.min_level or 0),
        "unit_cost": float(item.unit_cost or 0),
        "current_stock": float(level.quantity),
        "reserved_quantity": float(level.reserved),
        "available_stock": float(level.free),
        "created_at": item.created_at,
    }


def reservation_out(reservation: InventoryReservation, now: datetime) -> dict:
    return {
        "id": reservation.id,
        "order_id": reservation.order_id,
        "status": reservation.status,
        "reserved_by": reservation.reserved_by,
        "notes": reservation.notes,
        "created_at": reservation.created_at,
        "updated_at": reservation.updated_at,
        "expires_at": reservation.expires_at,
        "remaining_minutes": reservation.remaining_minutes(now) if reservation.is_active else 0,
        "is_expired": reservation.is_active and reservation.is_expired(now),
        "items": [
            {
                "inventory_item_id": line.inventory_item_id,
                "quantity_held": float(line.quantity_held),
                "unit": line.unit,
            }
            for line in reservation.lines
        ],
    }


def availability_out(result: AvailabilityResult) -> dict:
    def _check(c) -> dict:
        return {
            "inventory_item_id": c.inventory_item_id,
            "name": c.name,
            "unit": c.unit,
            "required": float(c.required),
            "available": float(c.available),
            "shortage": float(c.shortage),
            "sufficient": c.sufficient,
            "is_required": c.is_required,
            "used_in": [
                {**u, "required_amount": float(u["required_amount"])}
                for u in c.used_in
            ],
        }

    return {
        "is_available": result.is_available,
        "has_ingredient_tracking": result.has_ingredient_tracking,
        "ingredients": [_check(c) for c in result.ingredients],
        "insufficient_ingredients": [_check(c) for c in result.insufficient],
        "items": [
            {
                "menu_item_id": line.menu_item_id,
                "quantity": line.quantity,
                "size": line.size,
                "is_available": line.is_available,
                "has_ingredient_tracking": line.has_ingredient_tracking,
            }
            for line in result.lines
        ],
    }
