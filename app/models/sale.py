"""Sale model.

Commission fields are a snapshot taken at creation:
commission == (branch_commission or 0) + (agency_commission or 0).
The refund columns are the only financial fields changed after creation.
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, Date
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, MoneyType

if TYPE_CHECKING:
    from app.models.agency import Agency, Branch
    from app.models.customer import Customer, Vehicle
    from app.models.package import Package
    from app.models.payment import Payment


class Sale(Base):
    """A sold package for a vehicle, with its frozen commission split."""
    __tablename__ = "sales"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vehicles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    agency_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("agencies.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    package_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("packages.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Amounts
    price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    commission: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    branch_commission: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    agency_commission: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    # Validity
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    policy_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    # Refund
    is_refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

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
    customer: Mapped[Optional["Customer"]] = relationship("Customer", back_populates="sales")
    vehicle: Mapped["Vehicle"] = relationship("Vehicle", back_populates="sales")
    agency: Mapped[Optional["Agency"]] = relationship("Agency", back_populates="sales")
    branch: Mapped[Optional["Branch"]] = relationship("Branch", back_populates="sales")
    package: Mapped["Package"] = relationship("Package")
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="sale",
        order_by="Payment.created_at"
    )

    def __repr__(self) -> str:
        return f"<Sale(policy='{self.policy_number}', price={self.price})>"
