import uuid
from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base


class RecipeIngredient(Base):
    __tablename__ = "recipe_ingredients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    menu_item_id = Column(UUID(as_uuid=True), ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True)
    # NULL is the default recipe, used when the ordered size has no rows of its own
    size = Column(String, nullable=True, index=True)
    inventory_item_id = Column(UUID(as_uuid=True), ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity = Column(Numeric(10, 3), nullable=False)
    unit = Column(String, nullable=False)  # recipe unit, converted to the item's unit on resolve
    tolerance = Column(Numeric(5, 3), nullable=False, default=0.1)

    is_required = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=True)

    menu_item = relationship("MenuItem", back_populates="recipe_ingredients")
    inventory_item = relationship("InventoryItem")
