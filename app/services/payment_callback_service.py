"""
PayTR callback reconciliation.

PayTR delivers the payment result at least once, possibly late and possibly
concurrently. A callback is handled as:

1. Verify the hash. A bad hash is rejected before the database is touched.
2. Map the sanitized merchant_oid back to the sale id.
3. In one transaction, lock the sale's GATEWAY payment. A payment that is
   already COMPLETED or FAILED is left alone (duplicate delivery).
4. Otherwise move it PENDING -> COMPLETED/FAILED with a conditional UPDATE,
   so two concurrent deliveries cannot both transition the row.

Ledger balances are never touched here: commission was credited when the
sale was created.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SettlementError, ErrorCode
from app.models.payment import Payment, PaymentType, PaymentStatus, TERMINAL_SETTLEMENT_STATUSES
from app.schemas.payment import PayTRCallback
from app.services.paytr_service import PayTRService, restore_merchant_oid, from_minor_units

logger = logging.getLogger(__name__)

# Body PayTR expects; anything else makes it retry the notification
CALLBACK_ACK = "OK"

SUCCESS_STATUS = "success"


@dataclass
class CallbackResult:
    """What a single delivery did."""
    sale_id: Optional[UUID]
    payment_id: Optional[UUID]
    status: Optional[str]
    applied: bool  # False for duplicates and unknown payments


class PaymentCallbackService:
    """Idempotently settle GATEWAY payments from PayTR notifications."""

    def __init__(self, db: AsyncSession, paytr: PayTRService):
        self.db = db
        self.paytr = paytr

    def verify(self, callback: PayTRCallback) -> None:
        """
        Raises:
            SettlementError(INVALID_HASH) when the hash does not match
        """
        if not self.paytr.verify_callback_hash(
            callback.merchant_oid,
            callback.status,
            callback.total_amount,
            callback.hash,
        ):
            logger.warning(f"PayTR callback rejected, bad hash for merchant_oid {callback.merchant_oid}")
            raise SettlementError(
                "PayTR notification failed: bad hash",
                code=ErrorCode.INVALID_HASH,
                details={"merchant_oid": callback.merchant_oid},
            )

    async def handle(self, callback: PayTRCallback) -> CallbackResult:
        """Verify and apply one callback delivery."""
        self.verify(callback)
        try:
            sale_id = UUID(restore_merchant_oid(callback.merchant_oid))
        except SettlementError:
            # Signed by PayTR but not one of ours: acknowledge so it stops retrying
            logger.warning(f"PayTR callback for unknown merchant_oid {callback.merchant_oid} ignored")
            return CallbackResult(sale_id=None, payment_id=None, status=None, applied=False)

        try:
            result = await self._settle(sale_id, callback)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return result

    async def _settle(self, sale_id: UUID, callback: PayTRCallback) -> CallbackResult:
        locked = await self.db.execute(
            select(Payment)
            .where(
                Payment.sale_id == sale_id,
                Payment.type == PaymentType.GATEWAY.value,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payment = locked.scalar_one_or_none()

        if payment is None:
            # Acknowledged anyway, otherwise PayTR keeps redelivering
            logger.warning(f"PayTR callback for sale {sale_id} has no GATEWAY payment")
            return CallbackResult(sale_id=sale_id, payment_id=None, status=None, applied=False)

        if payment.status != PaymentStatus.PENDING.value:
            if payment.status in TERMINAL_SETTLEMENT_STATUSES:
                logger.info(
                    f"Duplicate PayTR callback for payment {payment.id} ignored "
                    f"(status {payment.status}, received {callback.status})"
                )
            else:
                logger.warning(
                    f"PayTR callback for payment {payment.id} in status {payment.status} ignored"
                )
            return CallbackResult(
                sale_id=sale_id, payment_id=payment.id, status=payment.status, applied=False
            )

        details = dict(payment.payment_details or {})
        details.update(callback.provider_details())
        details["callback_at"] = datetime.now(timezone.utc).isoformat()

        values = {"payment_details": details, "transaction_id": callback.merchant_oid}
        if callback.status == SUCCESS_STATUS:
            values["status"] = PaymentStatus.COMPLETED.value
            values["amount"] = from_minor_units(callback.total_amount)
        else:
            values["status"] = PaymentStatus.FAILED.value
            details["failed_reason"] = (
                callback.failed_reason_msg or callback.failed_reason_code or "unknown"
            )

        transition = await self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .values(**values, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

        if transition.rowcount != 1:
            logger.info(f"PayTR callback for payment {payment.id} lost the race, already settled")
            return CallbackResult(sale_id=sale_id, payment_id=payment.id, status=None, applied=False)

        if values["status"] == PaymentStatus.COMPLETED.value:
            logger.info(f"Payment {payment.id} for sale {sale_id} COMPLETED: {values['amount']}")
        else:
            logger.warning(
                f"Payment {payment.id} for sale {sale_id} FAILED: {details['failed_reason']}"
            )

        return CallbackResult(
            sale_id=sale_id, payment_id=payment.id, status=values["status"], applied=True
        )
