"""Agency and Branch models.

An agency is the top-level tenant. Branches are its sub-units; each carries
its own commission rate, capped at the parent agency's rate, and its own
running balance of earned commission.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, MoneyType, RateType

if TYPE_CHECKING:
    from app.models.sale import Sale


class EntityStatus(str, Enum):
    """Agency/branch status enumeration."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class Agency(Base):
    """
    Top-level tenant with a base commission rate and a commission balance.
    """
    __tablename__ = "agencies"
    __table_args__ = (
        CheckConstraint("commission_rate >= 0 AND commission_rate <= 100", name="ck_agency_rate_range"),
        CheckConstraint("balance >= 0", name="ck_agency_balance_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    tax_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    commission_rate: Mapped[Decimal] = mapped_column(
        RateType,
        nullable=False,
        default=Decimal("0"),
        comment="Commission % earned on sales, 0-100"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EntityStatus.ACTIVE.value
    )
    balance: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=Decimal("0"),
        comment="Spendable commission balance"
    )

    # Payout account
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    iban: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)

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
    branches: Mapped[List["Branch"]] = relationship("Branch", back_populates="agency")
    sales: Mapped[List["Sale"]] = relationship("Sale", back_populates="agency")

    def __repr__(self) -> str:
        return f"<Agency(name='{self.name}', rate={self.commission_rate})>"


class Branch(Base):
    """
    Sub-unit of an agency. commission_rate <= agency.commission_rate is
    enforced by AgencyService on every create/update of either rate.
    """
    __tablename__ = "branches"
    __table_args__ = (
        CheckConstraint("commission_rate >= 0 AND commission_rate <= 100", name="ck_branch_rate_range"),
        CheckConstraint("balance >= 0", name="ck_branch_balance_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    agency_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("agencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EntityStatus.ACTIVE.value
    )

    commission_rate: Mapped[Decimal] = mapped_column(
        RateType,
        nullable=False,
        comment="Branch share %, never above the agency rate"
    )
    balance: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=Decimal("0")
    )

    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    iban: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)

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
    agency: Mapped["Agency"] = relationship("Agency", back_populates="branches")
    sales: Mapped[List["Sale"]] = relationship("Sale", back_populates="branch")

    def __repr__(self) -> str:
        return f"<Branch(name='{self.name}', rate={self.commission_rate})>"
