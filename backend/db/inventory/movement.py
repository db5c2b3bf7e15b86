import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    inventory_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # On-hand delta and hold delta; a hold moves reserved only, a commit moves both
    change = Column(Numeric(12, 3), nullable=False, default=0)
    reserved_change = Column(Numeric(12, 3), nullable=False, default=0)

    reason = Column(Text, nullable=True)
    source_type = Column(Text, nullable=True, index=True)  # manual|reservation|commit|release|expiry
    source_id = Column(UUID(as_uuid=True), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    inventory_item = relationship("InventoryItem", back_populates="movements")
