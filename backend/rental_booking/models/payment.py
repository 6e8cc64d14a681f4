"""
Payment-provider event ledger and invoice records.

Key design decisions:
- `provider_event_id` is unique: the insert itself is the dedup check for
  at-least-once webhook delivery
- `processed` is flipped in the same transaction as the business effect
- PaymentRecord is keyed by provider invoice id so redelivery updates in place
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from rental_booking.db.base import Base, TimestampMixin, uuid_pk, utcnow


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = uuid_pk()
    provider_event_id = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_payment_events_unprocessed", "processed", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PaymentEvent(id={self.provider_event_id}, type={self.event_type}, processed={self.processed})>"


class PaymentRecord(Base, TimestampMixin):
    __tablename__ = "payment_records"

    id = uuid_pk()
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_invoice_id = Column(String(255), nullable=False, unique=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    invoice_pdf_url = Column(String(1024), nullable=True)
    hosted_invoice_url = Column(String(1024), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentRecord(invoice={self.provider_invoice_id}, booking={self.booking_id}, status={self.status})>"
