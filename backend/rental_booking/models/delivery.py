"""
Delivery slots and the time-boxed holds placed on them.

Key design decisions:
- `version` is bumped by every reservation attempt; the bump is the first
  write of the reservation transaction and doubles as a per-slot row lock
- Holds are never deleted by the reservation path, only released
- A partial unique index keeps at most one unreleased hold per booking
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)

from rental_booking.db.base import Base, TimestampMixin, uuid_pk, utcnow


class DeliverySlot(Base, TimestampMixin):
    __tablename__ = "delivery_slots"

    id = uuid_pk()
    date = Column(Date, nullable=False)
    window_label = Column(String(50), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    window_end = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Bumped on every reservation attempt
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_slot_capacity_positive"),
        CheckConstraint("window_end > window_start", name="check_slot_window_order"),
        Index("ix_delivery_slots_active_start", "is_active", "window_start"),
    )

    def __repr__(self) -> str:
        return f"<DeliverySlot(id={self.id}, date={self.date}, window={self.window_label}, capacity={self.capacity})>"


class SlotHold(Base):
    __tablename__ = "slot_holds"

    id = uuid_pk()
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    slot_id = Column(String(36), ForeignKey("delivery_slots.id"), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    released = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_slot_holds_slot_active", "slot_id", "released", "expires_at"),
        Index(
            "uq_slot_holds_one_open_per_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("released = false"),
            sqlite_where=text("released = 0"),
        ),
    )

    def __repr__(self) -> str:
        return f"<SlotHold(id={self.id}, booking={self.booking_id}, slot={self.slot_id}, released={self.released})>"
