"""
Domain errors raised by the inventory services.

Routers translate these into HTTP responses (see `http_error`); services never
raise `HTTPException` themselves.
"""
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status
from pydantic.alias_generators import to_camel


class InventoryError(Exception):
    """Base class for inventory/reservation failures."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVENTORY_ERROR"

    def to_detail(self) -> dict:
        return {"code": self.code, "message": str(self)}


class InsufficientStock(InventoryError):
    """Requested quantity exceeds free stock. Callers should not retry."""

    status_code = status.HTTP_409_CONFLICT
    code = "INSUFFICIENT_STOCK"

    def __init__(self, message: str, shortages: Optional[list[dict]] = None):
        super().__init__(message)
        self.shortages = shortages or []

    @classmethod
    def for_item(cls, item_id: UUID, name: Optional[str], required: Decimal, available: Decimal) -> "InsufficientStock":
        label = name or str(item_id)
        return cls(
            f"Insufficient stock for {label}: need {required}, have {available}",
            shortages=[{
                "inventory_item_id": str(item_id),
                "name": name,
                "required": float(required),
                "available": float(available),
                "shortage": float(required - available),
            }],
        )

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["shortages"] = [{to_camel(k): v for k, v in s.items()} for s in self.shortages]
        return detail


class RecipeNotFound(InventoryError):
    """No recipe rows exist for the menu item; the item is untracked."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "RECIPE_NOT_FOUND"

    def __init__(self, menu_item_id: UUID, size: Optional[str] = None):
        suffix = f" (size {size})" if size else ""
        super().__init__(f"No recipe for menu item {menu_item_id}{suffix}")
        self.menu_item_id = menu_item_id
        self.size = size


class ReservationNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: UUID):
        super().__init__(f"Reservation {reservation_id} not found")
        self.reservation_id = reservation_id


class InventoryItemNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "INVENTORY_ITEM_NOT_FOUND"

    def __init__(self, item_id: UUID):
        super().__init__(f"Inventory item {item_id} not found")
        self.item_id = item_id


class MenuItemNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "MENU_ITEM_NOT_FOUND"

    def __init__(self, menu_item_id: UUID):
        super().__init__(f"Menu item {menu_item_id} not found")
        self.menu_item_id = menu_item_id


class InvalidState(InventoryError):
    """Operation does not apply to the reservation's current status."""

    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE"

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["status"] = self.current_status
        return detail


class PersistenceUnavailable(InventoryError):
    """Storage layer unreachable. Transient; callers may retry with backoff."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "PERSISTENCE_UNAVAILABLE"


def http_error(exc: InventoryError) -> HTTPException:
    headers = {"Retry-After": "1"} if isinstance(exc, PersistenceUnavailable) else None
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail(), headers=headers)
