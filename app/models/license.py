"""
License and per-license domain bindings.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum
from app.db.base import Base


class LicenseStatus(str, Enum):
    """Local view of the billing subscription status."""
    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    INCOMPLETE = "INCOMPLETE"


# Only these statuses let a domain verify
ALLOWED_STATUSES = frozenset({LicenseStatus.ACTIVE, LicenseStatus.TRIALING})


class License(Base):
    __tablename__ = "licenses"

    id = Column(Integer, primary_key=True, index=True)
    license_key = Column(String, unique=True, index=True, nullable=False)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, unique=True, index=True, nullable=False)
    status = Column(SQLEnum(LicenseStatus, name="license_status"), nullable=False, default=LicenseStatus.INCOMPLETE)
    customer_email = Column(String, nullable=True)  # First write wins, see license_sync
    key_sent_at = Column(DateTime, nullable=True)  # Set when the license-key email is claimed
    max_domains = Column(Integer, nullable=False, default=2)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    domains = relationship(
        "LicenseDomain",
        back_populates="license",
        cascade="all, delete-orphan",
        order_by="LicenseDomain.created_at",
    )

    def __repr__(self):
        return f"<License(id={self.id}, subscription={self.stripe_subscription_id}, status={self.status})>"


class LicenseDomain(Base):
    __tablename__ = "license_domains"
    __table_args__ = (
        UniqueConstraint("license_id", "hostname", name="uq_license_domains_license_hostname"),
    )

    id = Column(Integer, primary_key=True, index=True)
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False, index=True)
    hostname = Column(String, nullable=False)  # Normalized: lowercase, no leading www.
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    license = relationship("License", back_populates="domains")

    def __repr__(self):
        return f"<LicenseDomain(license_id={self.license_id}, hostname={self.hostname})>"
