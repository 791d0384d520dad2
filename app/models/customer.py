"""Customer and Vehicle models.

Both may belong to an agency/branch; a NULL agency marks a system (direct)
record. Vehicles are keyed by their normalised plate.
"""
import re
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType

if TYPE_CHECKING:
    from app.models.sale import Sale


class UsageType(str, Enum):
    """Vehicle usage type."""
    PRIVATE = "PRIVATE"
    COMMERCIAL = "COMMERCIAL"
    TAXI = "TAXI"


def normalize_plate(plate: str) -> str:
    """Uppercase a plate and strip all whitespace: ' 34 abc 123' -> '34ABC123'."""
    return re.sub(r"\s+", "", plate or "").upper()


class Customer(Base):
    """Individual or corporate customer."""
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Ownership (NULL = system record)
    agency_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("agencies.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    is_corporate: Mapped[bool] = mapped_column(Boolean, default=False)
    identity_number: Mapped[str] = mapped_column(
        String(11),
        nullable=False,
        index=True,
        comment="National ID (individual) or tax number (corporate)"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    surname: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tax_office: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    vehicles: Mapped[List["Vehicle"]] = relationship("Vehicle", back_populates="customer")
    sales: Mapped[List["Sale"]] = relationship("Sale", back_populates="customer")

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname or ''}".strip()


class Vehicle(Base):
    """Insured vehicle. The normalised plate is a natural unique key."""
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    agency_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("agencies.id", ondelete="SET NULL"),
        nullable=True
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True
    )

    is_foreign_plate: Mapped[bool] = mapped_column(Boolean, default=False)
    plate: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        comment="Uppercase, whitespace stripped"
    )
    registration_serial: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    registration_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Brand/model ids reference the external catalog
    brand_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    model_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    model_year: Mapped[int] = mapped_column(Integer, nullable=False)
    usage_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UsageType.PRIVATE.value
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    customer: Mapped[Optional["Customer"]] = relationship("Customer", back_populates="vehicles")
    sales: Mapped[List["Sale"]] = relationship("Sale", back_populates="vehicle")
