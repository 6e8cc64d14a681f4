"""
Back-office models: staff accounts, audit trail and contract versions.
"""

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, String

from rental_booking.db.base import Base, TimestampMixin, uuid_pk, utcnow

ADMIN_ROLE = "ADMIN"
STAFF_ROLE = "STAFF"


class AdminUser(Base, TimestampMixin):
    __tablename__ = "admin_users"

    id = uuid_pk()
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(200), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(10), nullable=False, default=STAFF_ROLE)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(f"role IN ('{ADMIN_ROLE}', '{STAFF_ROLE}')", name="check_admin_role"),
    )

    def __repr__(self) -> str:
        return f"<AdminUser(id={self.id}, email={self.email}, role={self.role})>"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = uuid_pk()
    admin_user_id = Column(String(36), ForeignKey("admin_users.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(36), nullable=True, index=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class ContractVersion(Base):
    __tablename__ = "contract_versions"

    id = uuid_pk()
    version = Column(String(50), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    document_url = Column(String(1024), nullable=True)
    effective_date = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ContractVersion(version={self.version}, effective={self.effective_date})>"
