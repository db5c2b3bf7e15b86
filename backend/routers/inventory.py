from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_async_session
from db.inventory import InventoryItem
from db.reservation import RESERVATION_STATUSES
from routers.deps import get_services, service_errors
from routers.serializers import inventory_item_out, reservation_out
from schemas.inventory import (
    InventoryAlertsOut,
    InventoryItemCreate,
    InventoryItemOut,
    InventoryReportOut,
    ItemHistoryOut,
    StockAdjustmentCreate,
    StockAdjustmentOut,
)
from schemas.reservations import (
    ExtendRequest,
    ReleaseRequest,
    ReservationListOut,
    ReservationOut,
    ReserveRequest,
    ReserveResponse,
)
from services.common import read_only
from services.inventory_reports import generate_alerts, generate_report
from services.recipe_resolver import OrderLine
from services.registry import InventoryServices

router = APIRouter()


def _dec(x: float) -> Decimal:
    return Decimal(str(x))


# ---- inventory items ---------------------------------------------------------

@router.post("/items", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    payload: InventoryItemCreate,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    """Create an inventory item with an (optionally non-zero) opening stock."""
    item = InventoryItem(
        name=payload.name,
        category=payload.category,
        unit=payload.unit,
        min_level=_dec(payload.min_level),
        unit_cost=_dec(payload.unit_cost),
        is_active=True,
    )
    with service_errors("create inventory item"):
        try:
            level = await services.ledger.open_item(db, item, _dec(payload.initial_quantity))
        except IntegrityError:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Inventory item with this name already exists",
            )
        return inventory_item_out(item, level)


@router.get("/items", response_model=list[InventoryItemOut])
async def list_inventory_items(
    category: Optional[str] = None,
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    with service_errors("list inventory items"):
        stmt = select(InventoryItem).order_by(InventoryItem.name)
        if category:
            stmt = stmt.where(InventoryItem.category == category)
        if not include_inactive:
            stmt = stmt.where(InventoryItem.is_active.is_(True))
        async with read_only(db, "list inventory items"):
            items = list((await db.execute(stmt)).scalars().all())

        levels = await services.ledger.get_levels(db, [i.id for i in items])
        return [inventory_item_out(i, levels[i.id]) for i in items]


@router.get("/items/{item_id}", response_model=InventoryItemOut)
async def get_inventory_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    with service_errors("load inventory item"):
        async with read_only(db, "load inventory item"):
            item = await services.ledger.get_item(db, item_id)
        level = await services.ledger.get_level(db, item_id)
        return inventory_item_out(item, level)


@router.get("/items/{item_id}/movements", response_model=ItemHistoryOut)
async def get_item_movements(
    item_id: UUID,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    """Stock history of one item, newest first, with totals per source type."""
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="startDate must be before endDate")
    with service_errors("load stock history"):
        history = await services.ledger.get_history(db, item_id, start=start_date, end=end_date, limit=limit)
    return {
        "inventory_item_id": history.item.id,
        "name": history.item.name,
        "unit": history.item.unit,
        "start_date": start_date,
        "end_date": end_date,
        "total_records": history.total_records,
        "movements": [
            {
                "id": m.id,
                "change": float(m.change),
                "reserved_change": float(m.reserved_change),
                "reason": m.reason,
                "source_type": m.source_type,
                "source_id": m.source_id,
                "created_at": m.created_at,
            }
            for m in history.movements
        ],
        "by_source": [
            {**s, "change": float(s["change"]), "reserved_change": float(s["reserved_change"])}
            for s in history.by_source
        ],
    }


@router.post("/movements", response_model=StockAdjustmentOut, status_code=status.HTTP_201_CREATED)
async def create_movement(
    payload: StockAdjustmentCreate,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    """
    Manual stock adjustment (delivery, waste, count correction).

    Negative changes may not eat into stock held by active reservations.
    """
    with service_errors("adjust stock"):
        await services.ledger.adjust(
            db,
            payload.inventory_item_id,
            _dec(payload.change),
            reason=payload.reason or "Manual adjustment",
        )
        level = await services.ledger.get_level(db, payload.inventory_item_id)
        return {
            "inventory_item_id": payload.inventory_item_id,
            "change": payload.change,
            "current_stock": float(level.quantity),
            "reserved_quantity": float(level.reserved),
            "available_stock": float(level.free),
        }


# ---- alerts / reports --------------------------------------------------------

@router.get("/alerts", response_model=InventoryAlertsOut)
async def inventory_alerts(db: AsyncSession = Depends(get_async_session)):
    with service_errors("generate inventory alerts"):
        return await generate_alerts(db)


@router.get("/reports", response_model=InventoryReportOut)
async def inventory_report(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    report_type: str = Query("comprehensive", alias="reportType"),
    db: AsyncSession = Depends(get_async_session),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="startDate must be before endDate")
    with service_errors("generate inventory report"):
        return await generate_report(db, start_date, end_date, report_type)


# ---- reservations ------------------------------------------------------------

@router.post("/reserve", response_model=ReserveResponse, status_code=status.HTTP_201_CREATED)
async def reserve_inventory(
    payload: ReserveRequest,
    response: Response,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    """
    Hold the ingredients an order needs.

    Returns 201 for a new reservation and 200 when the order already had an
    active one (the existing reservation is returned unchanged).
    """
    lines = [
        OrderLine(menu_item_id=i.menu_item_id, quantity=i.quantity, size=i.size, name=i.name)
        for i in payload.items
    ]
    with service_errors("reserve inventory"):
        outcome = await services.reservations.reserve(
            db,
            payload.order_id,
            lines,
            reserved_by=payload.reserved_by,
            ttl_minutes=payload.ttl_minutes,
            notes=payload.notes,
        )

    if not outcome.created:
        response.status_code = status.HTTP_200_OK
    reservation = outcome.reservation
    return {
        "reservation_id": reservation.id,
        "created": outcome.created,
        "has_ingredient_tracking": outcome.has_ingredient_tracking,
        "reservation": reservation_out(reservation, services.reservations.clock()),
        "untracked_menu_items": [line.menu_item_id for line in outcome.untracked],
        "skipped_optional": outcome.skipped_optional,
    }


@router.get("/reservations", response_model=ReservationListOut)
async def list_reservations(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    if status_filter and status_filter.upper() not in RESERVATION_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {status_filter}")
    with service_errors("list reservations"):
        reservations, summary = await services.reservations.list_reservations(db, status_filter, limit)
    now = services.reservations.clock()
    return {
        "reservations": [reservation_out(r, now) for r in reservations],
        "summary": summary,
    }


@router.get("/reservations/{reservation_id}", response_model=ReservationOut)
async def get_reservation(
    reservation_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    with service_errors("load reservation"):
        reservation = await services.reservations.get(db, reservation_id)
    return reservation_out(reservation, services.reservations.clock())


@router.post("/reservations/{reservation_id}/commit", response_model=ReservationOut)
async def commit_reservation(
    reservation_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    with service_errors("commit reservation"):
        reservation = await services.reservations.commit(db, reservation_id)
    return reservation_out(reservation, services.reservations.clock())


@router.post("/reservations/{reservation_id}/release", response_model=ReservationOut)
async def release_reservation(
    reservation_id: UUID,
    payload: Optional[ReleaseRequest] = None,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    reason = (payload.reason if payload else None) or "Manual release"
    with service_errors("release reservation"):
        reservation = await services.reservations.release(db, reservation_id, reason)
    return reservation_out(reservation, services.reservations.clock())


@router.post("/reservations/{reservation_id}/extend", response_model=ReservationOut)
async def extend_reservation(
    reservation_id: UUID,
    payload: ExtendRequest,
    db: AsyncSession = Depends(get_async_session),
    services: InventoryServices = Depends(get_services),
):
    with service_errors("extend reservation"):
        reservation = await services.reservations.extend(db, reservation_id, payload.additional_minutes)
    return reservation_out(reservation, services.reservations.clock())
