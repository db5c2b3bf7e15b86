from typing import Optional
from uuid import UUID

from pydantic import Field, field_validator

from core.converters import normalize_unit
from schemas.common import CamelModel, strip_or_none
from schemas.reservations import OrderLineIn


class MenuItemCreate(CamelModel):
    name: str
    category: Optional[str] = None
    price: float = Field(default=0, ge=0)
    is_available: bool = True

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("category")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return strip_or_none(v)


class MenuItemOut(CamelModel):
    id: UUID
    name: str
    category: Optional[str] = None
    price: float
    is_available: bool


class RecipeIngredientIn(CamelModel):
    inventory_item_id: UUID
    quantity: float = Field(gt=0)
    unit: str
    tolerance: float = Field(default=0.1, ge=0, le=1)
    is_required: bool = True

    @field_validator("unit")
    @classmethod
    def _unit(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return normalize_unit(v)


class RecipeUpdate(CamelModel):
    size: Optional[str] = None
    ingredients: list[RecipeIngredientIn]

    @field_validator("size")
    @classmethod
    def _size(cls, v: Optional[str]) -> Optional[str]:
        v = strip_or_none(v)
        return v.lower() if v else None

    @field_validator("ingredients")
    @classmethod
    def _unique_items(cls, v: list[RecipeIngredientIn]) -> list[RecipeIngredientIn]:
        ids = [i.inventory_item_id for i in v]
        if len(ids) != len(set(ids)):
            raise ValueError("each inventory item may appear once per recipe size")
        return v


class RecipeIngredientOut(CamelModel):
    id: UUID
    size: Optional[str] = None
    inventory_item_id: UUID
    quantity: float
    unit: str
    tolerance: float
    is_required: bool
    sort_order: Optional[int] = None


class RecipeOut(CamelModel):
    menu_item_id: UUID
    ingredients: list[RecipeIngredientOut]


class AvailabilityRequest(CamelModel):
    menu_items: list[OrderLineIn] = Field(min_length=1)


class MenuItemUsage(CamelModel):
    menu_item_id: UUID
    menu_item_name: Optional[str] = None
    quantity: int
    required_amount: float


class IngredientCheckOut(CamelModel):
    inventory_item_id: UUID
    name: str
    unit: str
    required: float
    available: float
    shortage: float
    sufficient: bool
    is_required: bool
    used_in: list[MenuItemUsage] = Field(default_factory=list)


class LineAvailabilityOut(CamelModel):
    menu_item_id: UUID
    quantity: int
    size: Optional[str] = None
    is_available: bool
    has_ingredient_tracking: bool


class AvailabilityOut(CamelModel):
    is_available: bool
    has_ingredient_tracking: bool
    ingredients: list[IngredientCheckOut]
    insufficient_ingredients: list[IngredientCheckOut]
    items: list[LineAvailabilityOut]
