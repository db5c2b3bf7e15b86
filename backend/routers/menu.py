from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import MenuItemNotFound
from db.database import get_async_session
from db.menu_item import MenuItem
from routers.deps import get_services, service_errors
from routers.serializers import availability_out
from schemas.menu import (
    AvailabilityOut,
    AvailabilityRequest,
    MenuItemCreate,
    MenuItemOut,
    RecipeOut,
    RecipeUpdate,
)
from services.common import read_only, unit_of_work
from services.recipe_resolver import OrderLine
from services.registry import InventoryServices

router = APIRouter()


def _recipe_out(menu_item_id: UUID, rows) -> dict:
    return {
        "menu_item_id": menu_item_id,
        "ingredients": [
            {
                "id": r.id,
                "size": r.size,
                "inventory_item_id": r.inventory_item_id,
                "quantity": float(r.quantity),
                "unit": r.unit,
                "tolerance": float(r.tolerance),
                "is_required": bool(r.is_required),
                "sort_order": r.sort_order,
            }
            for r in rows
        ],
    }


async def _get_menu_item(db: AsyncSession, menu_item_id: UUID) -> MenuItem:
    async with read_only(db, "load menu item"):
        item = await db.get(MenuItem, menu_item_id)
    if not item:
        raise MenuItemNotFound(menu_item_id)
    return item


@router.post("/items", response_model=MenuItemOut, status_code=status.HTTP_201_CREATED)
async def create_menu_item(payload: MenuItemCreate, db: AsyncSession = Depends(get_async_session)):
    with service_errors("create menu item"):
        async with unit_of_work(db, "create menu item"):
            item = MenuItem(
                name=payload.name,
                category=payload.category,
                price=Decimal(str(payload.price)),
                is_available=payload.is_available,
            )
            db.add(item)
        return item.to_schema


@router.get("/items", response_model=list[MenuItemOut])
async def list_menu_items(category: Optional[str] = None, db: AsyncSession = Depends(get_async_session)):
    with service_errors("list menu items"):
        stmt = select(MenuItem).order_by(MenuItem.name)
        if category:
            stmt = stmt.where(MenuItem.category == category)
        async with read_only(db, "list menu items"):
            items = (await db.execute(stmt)).scalars().all()
        return [i.to_schema for i in items]


@router.get("/items/{menu_item_id}", response_model=MenuItemOut)
async def get_menu_item(menu_item_id: UUID, db: AsyncSession = Depends(get_async_session)):
    with service_errors("load menu item"):
        item = await _get_menu_item(db, menu_item_id)
        return item.to_schema


@router.get("/items/{menu_item_id}/recipe", response_model=RecipeOut)
async def get_recipe(
    menu_item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    with service_errors("load recipe"):
        await _get_menu_item(db, menu_item_id)
        async with read_only(db, "load recipe"):
            rows = await services.resolver.get_recipe(db, menu_item_id)
        return _recipe_out(menu_item_id, rows)


@router.put("/items/{menu_item_id}/recipe", response_model=RecipeOut)
async def set_recipe(
    menu_item_id: UUID,
    payload: RecipeUpdate,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    """Replace the recipe for one size (or the default recipe when size is omitted)."""
    with service_errors("update recipe"):
        rows = await services.resolver.set_recipe(
            db,
            menu_item_id,
            payload.size,
            [i.model_dump() for i in payload.ingredients],
        )
        return _recipe_out(menu_item_id, rows)


@router.post("/check-availability", response_model=AvailabilityOut)
async def check_availability(
    payload: AvailabilityRequest,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    """Advisory check: nothing is held, the answer can be stale by the time the order is reserved."""
    lines = [
        OrderLine(menu_item_id=i.menu_item_id, quantity=i.quantity, size=i.size, name=i.name)
        for i in payload.menu_items
    ]
    with service_errors("check availability"):
        result = await services.availability.check_availability(db, lines)
        return availability_out(result)
