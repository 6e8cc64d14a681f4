"""
Booking aggregate and its customer.

Key design decisions:
- `status` is a plain string guarded by a CHECK constraint; legal moves live
  in domain/state_machine.py
- The priced snapshot (term, monthly price, setup fee, minimum term) is
  all-or-nothing at the DB level, so pricing can never be partially stale
- Payment-provider references are only ever written by the payment event
  processor
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from rental_booking.db.base import Base, TimestampMixin, uuid_pk
from rental_booking.domain.state_machine import BookingStatus

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in BookingStatus)


class Customer(Base, TimestampMixin):
    __tablename__ = "customers"

    id = uuid_pk()
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(40), nullable=False)

    bookings = relationship("Booking", back_populates="customer")

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, email={self.email})>"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = uuid_pk()
    status = Column(String(20), nullable=False, default=BookingStatus.DRAFT.value)
    current_step = Column(Integer, nullable=False, default=1)

    # Step 1: eligibility
    service_zip = Column(String(5), nullable=True)
    has_hookups = Column(Boolean, nullable=True)

    # Step 2: package and priced snapshot
    package_type = Column(String(20), nullable=True)
    term_type = Column(String(20), nullable=True)
    monthly_price_cents = Column(Integer, nullable=True)
    setup_fee_cents = Column(Integer, nullable=True)
    minimum_term_months = Column(Integer, nullable=True)

    # Step 3: customer and address
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=True, index=True)
    address_line1 = Column(String(255), nullable=True)
    address_line2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    zip = Column(String(5), nullable=True)
    floor = Column(Integer, nullable=True)
    has_elevator = Column(Boolean, nullable=False, default=False)
    gate_code = Column(String(100), nullable=True)
    entry_notes = Column(Text, nullable=True)
    delivery_notes = Column(Text, nullable=True)

    # Step 4: hookups
    dryer_plug_type = Column(String(20), nullable=True)
    has_hot_cold_valves = Column(Boolean, nullable=True)
    has_drain_access = Column(Boolean, nullable=True)

    # Step 5: delivery
    delivery_slot_id = Column(String(36), ForeignKey("delivery_slots.id"), nullable=True, index=True)

    # Step 6: payment consent
    recurring_authorized_at = Column(DateTime(timezone=True), nullable=True)
    pay_at_delivery = Column(Boolean, nullable=False, default=False)

    # Step 7: contract signature
    contract_version_id = Column(String(36), ForeignKey("contract_versions.id"), nullable=True)
    contract_signed_at = Column(DateTime(timezone=True), nullable=True)
    contract_signer_name = Column(String(200), nullable=True)
    contract_signer_ip = Column(String(64), nullable=True)
    contract_signer_agent = Column(String(512), nullable=True)

    # Payment provider linkage
    provider_customer_id = Column(String(255), nullable=True)
    provider_subscription_id = Column(String(255), nullable=True, index=True)
    provider_checkout_session_id = Column(String(255), nullable=True)

    admin_notes = Column(Text, nullable=True)

    customer = relationship("Customer", back_populates="bookings", lazy="selectin")
    delivery_slot = relationship("DeliverySlot", lazy="selectin")
    contract_version = relationship("ContractVersion", lazy="selectin")

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="check_booking_status"),
        CheckConstraint("current_step BETWEEN 1 AND 8", name="check_booking_current_step"),
        # Priced snapshot is all-or-nothing
        CheckConstraint(
            "(term_type IS NULL AND monthly_price_cents IS NULL AND setup_fee_cents IS NULL"
            " AND minimum_term_months IS NULL)"
            " OR (term_type IS NOT NULL AND package_type IS NOT NULL"
            " AND monthly_price_cents IS NOT NULL AND setup_fee_cents IS NOT NULL"
            " AND minimum_term_months IS NOT NULL)",
            name="check_booking_pricing_snapshot",
        ),
        Index("ix_bookings_slot_status", "delivery_slot_id", "status"),
    )

    @property
    def has_pricing(self) -> bool:
        return self.term_type is not None

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, step={self.current_step})>"
