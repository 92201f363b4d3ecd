from datetime import datetime, timezone
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base
from ..constants import ROLE_PRIORITY


def utcnow():
    return datetime.now(timezone.utc)


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime, default=utcnow, nullable=False),
)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)

    users = orm_relationship(
        "User",
        secondary=user_roles,
        back_populates="roles",
        overlaps="primary_role,primary_users",
    )
    primary_users = orm_relationship(
        "User",
        back_populates="primary_role",
        foreign_keys="User.role_id",
        overlaps="users,roles",
    )


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    primary_role = orm_relationship(
        "Role",
        back_populates="primary_users",
        foreign_keys=[role_id],
        overlaps="users,roles",
    )
    roles = orm_relationship(
        "Role",
        secondary=user_roles,
        back_populates="users",
        overlaps="primary_role,primary_users",
    )
    properties = orm_relationship("Property", back_populates="owner")
    audit_logs = orm_relationship("AuditLog", back_populates="actor")

    @property
    def role_names(self) -> list[str]:
        return [role.name for role in self.roles] if self.roles else ([self.primary_role.name] if self.primary_role else [])

    def has_role(self, role_name: str) -> bool:
        if any(role.name == role_name for role in self.roles):
            return True
        return self.primary_role.name == role_name if self.primary_role else False

    def has_any_role(self, *role_names: str) -> bool:
        targets = set(role_names)
        if not targets:
            return False
        return any(role.name in targets for role in self.roles) or (
            self.primary_role.name in targets if self.primary_role else False
        )

    @property
    def highest_priority_role(self):
        if self.roles:
            return max(self.roles, key=lambda role: ROLE_PRIORITY.get(role.name, 0))
        return self.primary_role


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)

    actor = orm_relationship("User", back_populates="audit_logs")


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    signatures = orm_relationship("LeaseSigner", back_populates="profile")


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    address = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    owner = orm_relationship("User", back_populates="properties")
    leases = orm_relationship("Lease", back_populates="property")
    charges = orm_relationship("Charge", back_populates="property", cascade="all, delete-orphan")


class Lease(Base):
    __tablename__ = "leases"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=True, index=True)
    lease_type = Column(String, nullable=False, default="nu")
    status = Column(String, nullable=False, default="draft", index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    monthly_rent = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="leases")
    signers = orm_relationship("LeaseSigner", back_populates="lease", cascade="all, delete-orphan")
    provisions = orm_relationship("Provision", back_populates="lease", cascade="all, delete-orphan")
    invoices = orm_relationship("Invoice", back_populates="lease", cascade="all, delete-orphan")
    reconciliations = orm_relationship("Reconciliation", back_populates="lease", cascade="all, delete-orphan")


class LeaseSigner(Base):
    __tablename__ = "lease_signers"

    id = Column(Integer, primary_key=True, index=True)
    lease_id = Column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    role = Column(String, nullable=False)  # locataire_principal|colocataire|garant|proprietaire
    signed_at = Column(DateTime, nullable=True)

    lease = orm_relationship("Lease", back_populates="signers")
    profile = orm_relationship("Profile", back_populates="signatures")


class Charge(Base):
    __tablename__ = "charges"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String, nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    periodicity = Column(String, nullable=False, default="monthly")  # monthly|quarterly|yearly
    is_rebillable = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="charges")


class Provision(Base):
    __tablename__ = "provisions"

    id = Column(Integer, primary_key=True, index=True)
    lease_id = Column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)
    month = Column(Date, nullable=False, index=True)  # first day of the collected month
    amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    lease = orm_relationship("Lease", back_populates="provisions")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    lease_id = Column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)
    period = Column(String, nullable=True)  # e.g. 2025-01
    amount = Column(Numeric(10, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String, default="draft", nullable=False, index=True)  # draft|sent|late|paid
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    lease = orm_relationship("Lease", back_populates="invoices")


class Reconciliation(Base):
    __tablename__ = "reconciliations"
    __table_args__ = (UniqueConstraint("lease_id", "year", name="uq_reconciliation_lease_year"),)

    id = Column(Integer, primary_key=True, index=True)
    lease_id = Column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    total_charges = Column(Numeric(12, 2), nullable=False, default=0)
    total_provisions = Column(Numeric(12, 2), nullable=False, default=0)
    delta = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default="calculated")
    calculated_at = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    lease = orm_relationship("Lease", back_populates="reconciliations")


class OutboxEvent(Base):
    __tablename__ = "outbox"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String, nullable=False, default="pending", index=True)  # pending|processing|completed|failed
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    scheduled_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
