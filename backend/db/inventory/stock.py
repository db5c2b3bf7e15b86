import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base


class InventoryStock(Base):
    """On-hand quantity for one item. Free stock is quantity - reserved_quantity."""
    __tablename__ = "inventory_stock"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_stock_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_stock_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_stock_reserved_covered"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    inventory_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    quantity = Column(Numeric(12, 3), nullable=False, default=0)
    # Sum of quantity_held over ACTIVE reservation lines for this item
    reserved_quantity = Column(Numeric(12, 3), nullable=False, default=0)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    inventory_item = relationship("InventoryItem", back_populates="stock")
