"""Payment model.

Status graph:
    PENDING   -> COMPLETED | FAILED   (single transition, first writer wins)
    any       -> REFUNDED             (refund flow only)
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, MoneyType, JSONType

if TYPE_CHECKING:
    from app.models.sale import Sale


class PaymentType(str, Enum):
    """How the sale was paid."""
    GATEWAY = "GATEWAY"   # PayTR iframe, settled by callback
    BALANCE = "BALANCE"   # Debited from the agency balance


class PaymentStatus(str, Enum):
    """Payment lifecycle status."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


TERMINAL_SETTLEMENT_STATUSES = {PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value}


class Payment(Base):
    """Payment attempt for a sale."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    sale_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("sales.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    agency_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("agencies.id", ondelete="SET NULL"),
        nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
        index=True
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_details: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Opaque provider details"
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
    sale: Mapped["Sale"] = relationship("Sale", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment(type={self.type}, status={self.status}, amount={self.amount})>"
