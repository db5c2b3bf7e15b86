from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import Field, field_validator

from schemas.common import CamelModel, strip_or_none

ReservationStatus = Literal["ACTIVE", "COMMITTED", "RELEASED", "EXPIRED"]


class OrderLineIn(CamelModel):
    menu_item_id: UUID
    quantity: int = Field(default=1, ge=1)
    size: Optional[str] = None
    name: Optional[str] = None

    @field_validator("size")
    @classmethod
    def _size(cls, v: Optional[str]) -> Optional[str]:
        v = strip_or_none(v)
        return v.lower() if v else None


class ReserveRequest(CamelModel):
    order_id: str
    items: list[OrderLineIn] = Field(min_length=1)
    reserved_by: Optional[str] = None
    ttl_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)
    notes: Optional[str] = None

    @field_validator("order_id")
    @classmethod
    def _order_id(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("orderId is required")
        return v

    @field_validator("reserved_by", "notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return strip_or_none(v)


class ReleaseRequest(CamelModel):
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return strip_or_none(v)


class ExtendRequest(CamelModel):
    additional_minutes: int = Field(default=15, gt=0, le=24 * 60)


class ReservationLineOut(CamelModel):
    inventory_item_id: UUID
    quantity_held: float
    unit: str


class ReservationOut(CamelModel):
    id: UUID
    order_id: str
    status: ReservationStatus
    reserved_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    remaining_minutes: int
    is_expired: bool
    items: list[ReservationLineOut] = Field(default_factory=list)


class SkippedIngredientOut(CamelModel):
    inventory_item_id: UUID
    name: Optional[str] = None


class ReserveResponse(CamelModel):
    reservation_id: UUID
    created: bool
    has_ingredient_tracking: bool
    reservation: ReservationOut
    untracked_menu_items: list[UUID] = Field(default_factory=list)
    skipped_optional: list[SkippedIngredientOut] = Field(default_factory=list)


class ReservationListOut(CamelModel):
    reservations: list[ReservationOut]
    summary: dict[str, int]
