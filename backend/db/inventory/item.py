import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, unique=True)

    # 'Ingredients' | 'Beverages' | 'Food' | 'Packaging'
    category = Column(Text, nullable=True, index=True)
    unit = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Low-stock threshold, compared against free stock
    min_level = Column(Numeric(12, 3), nullable=False, default=0)
    unit_cost = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    stock = relationship("InventoryStock", back_populates="inventory_item", uselist=False, cascade="all, delete-orphan")
    movements = relationship("InventoryMovement", back_populates="inventory_item", cascade="all, delete-orphan")
