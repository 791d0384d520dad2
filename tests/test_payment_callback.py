"""
Tests for PayTR callback reconciliation.

Covers:
- Success/failed notifications settling a PENDING payment
- Duplicate and late deliveries being silent no-ops
- Tampered hashes never touching the payment
- Ledger balances left alone by callbacks
"""

import uuid
import pytest
from decimal import Decimal

from app.core.exceptions import SettlementError, ErrorCode
from app.models.agency import Agency, Branch
from app.models.payment import Payment, PaymentStatus
from app.schemas.payment import PayTRCallback
from app.services.payment_callback_service import PaymentCallbackService
from app.services.paytr_service import sanitize_merchant_oid
from app.services.sale_service import SaleService
from tests.factories import reload, make_principal, make_sale_request


async def _gateway_sale(db, seed, paytr):
    outcome = await SaleService(db, paytr=paytr).complete_sale(
        make_sale_request(seed.package_id, payment_type="GATEWAY"), make_principal(seed)
    )
    return outcome.sale.id, outcome.sale.payments[0].id


def _callback(paytr, sale_id, status="success", total_amount="100000", **extra) -> PayTRCallback:
    oid = sanitize_merchant_oid(str(sale_id))
    return PayTRCallback(
        merchant_oid=oid,
        status=status,
        total_amount=total_amount,
        hash=paytr.callback_hash(oid, status, total_amount),
        **extra,
    )


class TestSettlement:

    @pytest.mark.asyncio
    async def test_success_completes_payment(self, db, seed, paytr):
        sale_id, payment_id = await _gateway_sale(db, seed, paytr)

        result = await PaymentCallbackService(db, paytr).handle(
            _callback(paytr, sale_id, payment_type="card", currency="TL")
        )

        assert result.applied
        assert result.sale_id == sale_id
        payment = await reload(db, Payment, payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.amount == Decimal("1000.00")
        assert payment.payment_details["payment_type"] == "card"
        assert "hash" not in payment.payment_details

    @pytest.mark.asyncio
    async def test_failed_records_reason(self, db, seed, paytr):
        sale_id, payment_id = await _gateway_sale(db, seed, paytr)

        result = await PaymentCallbackService(db, paytr).handle(
            _callback(
                paytr, sale_id, status="failed",
                failed_reason_code="2", failed_reason_msg="Card declined",
            )
        )

        assert result.status == PaymentStatus.FAILED.value
        payment = await reload(db, Payment, payment_id)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.payment_details["failed_reason"] == "Card declined"
        assert payment.amount == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_callback_never_touches_ledger(self, db, seed, paytr):
        sale_id, _ = await _gateway_sale(db, seed, paytr)

        await PaymentCallbackService(db, paytr).handle(_callback(paytr, sale_id))

        assert (await reload(db, Agency, seed.agency_id)).balance == Decimal("100.00")
        assert (await reload(db, Branch, seed.branch_id)).balance == Decimal("150.00")


class TestIdempotency:

    @pytest.mark.asyncio
    async def test_duplicate_success_is_noop(self, db, seed, paytr):
        sale_id, payment_id = await _gateway_sale(db, seed, paytr)
        service = PaymentCallbackService(db, paytr)

        first = await service.handle(_callback(paytr, sale_id))
        second = await service.handle(_callback(paytr, sale_id))

        assert first.applied
        assert not second.applied
        assert second.status == PaymentStatus.COMPLETED.value
        assert (await reload(db, Payment, payment_id)).status == PaymentStatus.COMPLETED.value
        assert (await reload(db, Agency, seed.agency_id)).balance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_late_failure_after_success_ignored(self, db, seed, paytr):
        sale_id, payment_id = await _gateway_sale(db, seed, paytr)
        service = PaymentCallbackService(db, paytr)

        await service.handle(_callback(paytr, sale_id))
        late = await service.handle(_callback(paytr, sale_id, status="failed", total_amount="0"))

        assert not late.applied
        payment = await reload(db, Payment, payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.amount == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_racing_deliveries_settle_once(self, db, seed, paytr, monkeypatch):
        """A second delivery settles the payment between our read and our update."""
        sale_id, payment_id = await _gateway_sale(db, seed, paytr)
        callback = _callback(paytr, sale_id)
        execute = db.execute
        rival = []

        async def execute_with_rival_delivery(statement, *args, **kwargs):
            if getattr(statement, "is_dml", False) and not rival:
                rival.append(None)
                rival[0] = await PaymentCallbackService(db, paytr)._settle(sale_id, callback)
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(db, "execute", execute_with_rival_delivery)
        result = await PaymentCallbackService(db, paytr).handle(callback)
        monkeypatch.undo()

        assert rival[0].applied
        assert not result.applied

        payment = await reload(db, Payment, payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert (await reload(db, Agency, seed.agency_id)).balance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_unknown_sale_acknowledged(self, db, seed, paytr):
        result = await PaymentCallbackService(db, paytr).handle(_callback(paytr, uuid.uuid4()))
        assert not result.applied
        assert result.payment_id is None


class TestAuthenticity:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("status", "failed"),
        ("total_amount", "1"),
        ("hash", "AAAA"),
    ])
    async def test_tampered_hash_rejected(self, db, seed, paytr, field, value):
        sale_id, payment_id = await _gateway_sale(db, seed, paytr)
        callback = _callback(paytr, sale_id).model_copy(update={field: value})

        with pytest.raises(SettlementError) as exc:
            await PaymentCallbackService(db, paytr).handle(callback)

        assert exc.value.code == ErrorCode.INVALID_HASH
        assert (await reload(db, Payment, payment_id)).status == PaymentStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_valid_hash_with_foreign_oid_acknowledged(self, db, seed, paytr):
        callback = PayTRCallback(
            merchant_oid="not-a-sale",
            status="success",
            total_amount="100",
            hash=paytr.callback_hash("not-a-sale", "success", "100"),
        )

        result = await PaymentCallbackService(db, paytr).handle(callback)

        assert not result.applied
        assert result.sale_id is None

    def test_from_fields_keeps_strings(self):
        callback = PayTRCallback.from_fields({
            "merchant_oid": "abc",
            "status": "success",
            "total_amount": 3456,
            "hash": "h",
            "unknown": "ignored",
        })

        assert callback.total_amount == "3456"
        assert callback.provider_details() == {
            "merchant_oid": "abc",
            "status": "success",
            "total_amount": "3456",
        }
