"""
Prorated refunds.

    net_price      = gross / (1 + VAT_RATE)
    contract_days  = end_date - start_date
    daily_rate     = net_price / contract_days
    used_days      = today - start_date
    remaining_days = max(0, contract_days - used_days)
    refund_amount  = daily_rate * remaining_days

Applying a refund credits the agency only for BALANCE payments; branch
balances and GATEWAY payments are not adjusted on the ledger.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.core.exceptions import SettlementError, ErrorCode
from app.models.payment import Payment, PaymentType, PaymentStatus
from app.models.sale import Sale
from app.services.commission_service import to_money
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundBreakdown:
    total_price: Decimal
    vat_amount: Decimal
    net_price: Decimal
    contract_days: int
    used_days: int
    remaining_days: int
    daily_rate: Decimal
    refund_amount: Decimal

    def as_dict(self) -> dict:
        return asdict(self)


def prorate(price, start_date: date, end_date: date, today: date, vat_rate=None) -> RefundBreakdown:
    """Pure proration; amounts are rounded only when reported."""
    gross = Decimal(str(price))
    vat = Decimal(str(vat_rate if vat_rate is not None else settings.VAT_RATE))

    contract_days = (end_date - start_date).days
    if contract_days <= 0:
        raise SettlementError("Sale has an empty validity period")

    net_price = gross / (1 + vat)
    daily_rate = net_price / contract_days
    used_days = (today - start_date).days
    remaining_days = max(0, contract_days - used_days)

    return RefundBreakdown(
        total_price=to_money(gross),
        vat_amount=to_money(gross - net_price),
        net_price=to_money(net_price),
        contract_days=contract_days,
        used_days=used_days,
        remaining_days=remaining_days,
        daily_rate=to_money(daily_rate),
        refund_amount=to_money(daily_rate * remaining_days),
    )


def ensure_refundable(sale: Sale, today: date) -> None:
    if sale.is_refunded:
        raise SettlementError(
            "This sale has already been refunded",
            code=ErrorCode.ALREADY_REFUNDED,
        )
    if today > sale.end_date:
        raise SettlementError(
            "Contract has expired, it can no longer be refunded",
            code=ErrorCode.CONTRACT_EXPIRED,
            details={"end_date": sale.end_date.isoformat()},
        )


class RefundService:
    """Refund quotes and the compensating refund transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_sale(self, sale_id: UUID, lock: bool = False) -> Sale:
        stmt = (
            select(Sale)
            .options(
                selectinload(Sale.customer),
                selectinload(Sale.vehicle),
                selectinload(Sale.package),
                selectinload(Sale.payments),
            )
            .where(Sale.id == sale_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update(of=Sale)
        result = await self.db.execute(stmt)
        sale = result.scalar_one_or_none()
        if not sale:
            raise SettlementError.not_found("Sale")
        return sale

    async def calculate_refund(self, sale_id: UUID, today: Optional[date] = None) -> dict:
        """Read-only refund quote."""
        today = today or date.today()
        sale = await self._load_sale(sale_id)
        ensure_refundable(sale, today)

        breakdown = prorate(sale.price, sale.start_date, sale.end_date, today)
        return {
            "sale": {
                "id": sale.id,
                "customer_name": sale.customer.full_name if sale.customer else None,
                "vehicle_plate": sale.vehicle.plate if sale.vehicle else None,
                "package_name": sale.package.name if sale.package else None,
                "total_price": to_money(sale.price),
                "start_date": sale.start_date,
                "end_date": sale.end_date,
            },
            "calculation": breakdown.as_dict(),
        }

    async def process_refund(
        self,
        sale_id: UUID,
        reason: str,
        actor_id: Optional[UUID],
        today: Optional[date] = None,
    ) -> Sale:
        """
        Mark the sale refunded and reverse the balance payment.

        Raises:
            SettlementError(ALREADY_REFUNDED | CONTRACT_EXPIRED | NOT_FOUND)
        """
        today = today or date.today()

        try:
            sale = await self._load_sale(sale_id, lock=True)
            ensure_refundable(sale, today)
            breakdown = prorate(sale.price, sale.start_date, sale.end_date, today)
            refund_amount = breakdown.refund_amount
            now = datetime.now(timezone.utc)

            marked = await self.db.execute(
                update(Sale)
                .where(Sale.id == sale.id, Sale.is_refunded.is_(False))
                .values(
                    is_refunded=True,
                    refunded_at=now,
                    refund_amount=refund_amount,
                    refund_reason=reason,
                    refunded_by=actor_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if marked.rowcount != 1:
                raise SettlementError(
                    "This sale has already been refunded",
                    code=ErrorCode.ALREADY_REFUNDED,
                )

            result = await self.db.execute(
                select(Payment)
                .where(Payment.sale_id == sale.id)
                .order_by(Payment.created_at)
                .limit(1)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            payment = result.scalar_one_or_none()

            if payment is not None:
                if payment.type == PaymentType.BALANCE.value and sale.agency_id:
                    await LedgerService(self.db).credit_agency(sale.agency_id, refund_amount)

                details = dict(payment.payment_details or {})
                details.update({
                    "refund_date": now.isoformat(),
                    "refund_amount": str(refund_amount),
                    "refund_reason": reason,
                })
                payment.status = PaymentStatus.REFUNDED.value
                payment.payment_details = details

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Sale {sale_id} refunded: {refund_amount} "
            f"({breakdown.remaining_days}/{breakdown.contract_days} days remaining)"
        )
        return await self._load_sale(sale_id)
