import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base

ACTIVE = "ACTIVE"
COMMITTED = "COMMITTED"
RELEASED = "RELEASED"
EXPIRED = "EXPIRED"

RESERVATION_STATUSES = (ACTIVE, COMMITTED, RELEASED, EXPIRED)


class InventoryReservation(Base):
    __tablename__ = "inventory_reservations"
    __table_args__ = (
        # At most one ACTIVE reservation per order
        Index(
            "ux_inventory_reservations_active_order",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'COMMITTED', 'RELEASED', 'EXPIRED')",
            name="ck_inventory_reservations_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(String, nullable=False, index=True)
    status = Column(Text, nullable=False, default=ACTIVE, index=True)

    reserved_by = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)

    lines = relationship(
        "ReservationLine",
        back_populates="reservation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def remaining_minutes(self, now: datetime) -> int:
        if self.expires_at <= now:
            return 0
        return int((self.expires_at - now).total_seconds() // 60)


class ReservationLine(Base):
    __tablename__ = "inventory_reservation_lines"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reservation_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inventory_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity_held = Column(Numeric(12, 3), nullable=False)
    unit = Column(String, nullable=False)

    reservation = relationship("InventoryReservation", back_populates="lines")
    inventory_item = relationship("InventoryItem")
