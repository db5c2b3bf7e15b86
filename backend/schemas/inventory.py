from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import Field, field_validator

from core.converters import normalize_unit
from schemas.common import CamelModel, strip_or_none


InventoryCategory = Literal["Ingredients", "Beverages", "Food", "Packaging"]


class InventoryItemCreate(CamelModel):
    name: str
    unit: str
    category: Optional[InventoryCategory] = None
    min_level: float = 0
    unit_cost: float = 0
    initial_quantity: float = 0

    @field_validator("name", "unit")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("unit")
    @classmethod
    def _unit(cls, v: str) -> str:
        return normalize_unit(v)

    @field_validator("min_level", "unit_cost", "initial_quantity")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v


class InventoryItemOut(CamelModel):
    id: UUID
    name: str
    category: Optional[str] = None
    unit: str
    is_active: bool
    min_level: float
    unit_cost: float
    current_stock: float
    reserved_quantity: float
    available_stock: float
    created_at: Optional[datetime] = None


class StockAdjustmentCreate(CamelModel):
    inventory_item_id: UUID
    change: float
    reason: Optional[str] = None

    @field_validator("change")
    @classmethod
    def _non_zero(cls, v: float) -> float:
        if v == 0:
            raise ValueError("change must be non-zero")
        return v

    @field_validator("reason")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return strip_or_none(v)


class StockAdjustmentOut(CamelModel):
    inventory_item_id: UUID
    change: float
    current_stock: float
    reserved_quantity: float
    available_stock: float


class InventoryAlertOut(CamelModel):
    inventory_item_id: UUID
    name: str
    unit: str
    type: Literal["low_stock", "restock_needed"]
    priority: Literal["critical", "high", "medium", "low"]
    total_stock: float
    reserved_quantity: float
    available_stock: float
    threshold: float
    affected_menu_items: int
    recommendation: str


class AlertSummary(CamelModel):
    total: int
    critical: int
    high: int
    medium: int


class InventoryAlertsOut(CamelModel):
    alerts: list[InventoryAlertOut]
    summary: AlertSummary
    last_updated: datetime


class ReportItemOut(CamelModel):
    id: UUID
    name: str
    unit: str
    current_stock: float
    reserved_quantity: float
    unit_cost: float
    value: float
    stock_level: Literal["low", "normal"]


class ReportAdjustmentOut(CamelModel):
    id: UUID
    inventory_item_id: UUID
    name: str
    change: float
    reserved_change: float
    reason: Optional[str] = None
    source_type: Optional[str] = None
    source_id: Optional[UUID] = None
    created_at: datetime


class DateRange(CamelModel):
    start_date: datetime
    end_date: datetime


class ReportSummary(CamelModel):
    total_items: int
    low_stock_items: int
    total_value: float
    adjustments_count: int


class InventoryReportOut(CamelModel):
    report_type: str
    date_range: DateRange
    summary: ReportSummary
    items: list[ReportItemOut] = Field(default_factory=list)
    adjustments: list[ReportAdjustmentOut] = Field(default_factory=list)
    generated_at: datetime


class ItemMovementOut(CamelModel):
    id: UUID
    change: float
    reserved_change: float
    reason: Optional[str] = None
    source_type: Optional[str] = None
    source_id: Optional[UUID] = None
    created_at: datetime


class MovementSourceSummary(CamelModel):
    source_type: Optional[str] = None
    count: int
    change: float
    reserved_change: float


class ItemHistoryOut(CamelModel):
    inventory_item_id: UUID
    name: str
    unit: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_records: int
    movements: list[ItemMovementOut] = Field(default_factory=list)
    by_source: list[MovementSourceSummary] = Field(default_factory=list)
