"""Tests for prorated refunds."""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from app.core.exceptions import SettlementError, ErrorCode
from app.models.agency import Agency, Branch
from app.models.payment import Payment, PaymentStatus
from app.models.sale import Sale
from app.services.refund_service import RefundService, prorate
from app.services.sale_service import SaleService
from tests.factories import reload, set_agency_balance, make_principal, make_sale_request

START = date(2026, 1, 1)
END = START + timedelta(days=365)


class TestProrate:

    def test_refund_on_start_date(self):
        """Gross 1200 over 365 days, refunded on day 0 -> 1000.00."""
        breakdown = prorate(Decimal("1200"), START, END, START)

        assert breakdown.net_price == Decimal("1000.00")
        assert breakdown.vat_amount == Decimal("200.00")
        assert breakdown.contract_days == 365
        assert breakdown.used_days == 0
        assert breakdown.remaining_days == 365
        assert breakdown.daily_rate == Decimal("2.74")
        assert breakdown.refund_amount == Decimal("1000.00")

    def test_refund_on_end_date(self):
        breakdown = prorate(Decimal("1200"), START, END, END)

        assert breakdown.remaining_days == 0
        assert breakdown.refund_amount == Decimal("0.00")

    def test_refund_mid_contract(self):
        breakdown = prorate(Decimal("1200"), START, END, START + timedelta(days=100))

        assert breakdown.used_days == 100
        assert breakdown.remaining_days == 265
        assert abs(breakdown.refund_amount - Decimal("726.03")) <= Decimal("0.01")

    def test_refund_before_start(self):
        """Days before the start count as unused."""
        breakdown = prorate(Decimal("1200"), START, END, START - timedelta(days=3))
        assert breakdown.used_days == -3
        assert breakdown.remaining_days == 368


async def _balance_sale(db, seed, price="1200.00"):
    await set_agency_balance(db, seed.agency_id, price)
    outcome = await SaleService(db).complete_sale(
        make_sale_request(seed.package_id, price=price, start=START), make_principal(seed)
    )
    return outcome.sale.id


async def _gateway_sale(db, seed, paytr, price="1200.00"):
    outcome = await SaleService(db, paytr=paytr).complete_sale(
        make_sale_request(seed.package_id, payment_type="GATEWAY", price=price, start=START),
        make_principal(seed),
    )
    return outcome.sale.id


class TestCalculateRefund:

    @pytest.mark.asyncio
    async def test_quote_is_read_only(self, db, seed):
        sale_id = await _balance_sale(db, seed)

        quote = await RefundService(db).calculate_refund(sale_id, today=START)

        assert quote["calculation"]["refund_amount"] == Decimal("1000.00")
        assert quote["sale"]["vehicle_plate"] == "34ABC123"
        assert quote["sale"]["package_name"] == "Roadside Assistance Gold"
        assert (await reload(db, Sale, sale_id)).is_refunded is False

    @pytest.mark.asyncio
    async def test_expired_contract(self, db, seed):
        sale_id = await _balance_sale(db, seed)

        with pytest.raises(SettlementError) as exc:
            await RefundService(db).calculate_refund(sale_id, today=END + timedelta(days=1))
        assert exc.value.code == ErrorCode.CONTRACT_EXPIRED


class TestProcessRefund:

    @pytest.mark.asyncio
    async def test_balance_refund_credits_agency(self, db, seed):
        """Agency pays 1200 from balance, keeps 120 (25% - 15%), gets 1000 back."""
        sale_id = await _balance_sale(db, seed)
        actor = make_principal(seed).user_id

        sale = await RefundService(db).process_refund(sale_id, "Customer request", actor, today=START)

        assert sale.is_refunded
        assert sale.refund_amount == Decimal("1000.00")
        assert sale.refund_reason == "Customer request"
        assert sale.refunded_by == actor
        assert sale.refunded_at is not None

        # 1200 - 1200 + 120 (agency share) + 1000 (refund)
        assert (await reload(db, Agency, seed.agency_id)).balance == Decimal("1120.00")
        # Branch commission is not clawed back
        assert (await reload(db, Branch, seed.branch_id)).balance == Decimal("180.00")

        payment = await reload(db, Payment, sale.payments[0].id)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.payment_details["refund_amount"] == "1000.00"

    @pytest.mark.asyncio
    async def test_gateway_refund_leaves_ledger(self, db, seed, paytr):
        sale_id = await _gateway_sale(db, seed, paytr)

        sale = await RefundService(db).process_refund(sale_id, "Cancelled", None, today=START)

        assert sale.refund_amount == Decimal("1000.00")
        assert (await reload(db, Agency, seed.agency_id)).balance == Decimal("120.00")
        payment = await reload(db, Payment, sale.payments[0].id)
        assert payment.status == PaymentStatus.REFUNDED.value

    @pytest.mark.asyncio
    async def test_second_refund_rejected(self, db, seed):
        sale_id = await _balance_sale(db, seed)
        service = RefundService(db)
        await service.process_refund(sale_id, "First", None, today=START)

        with pytest.raises(SettlementError) as exc:
            await service.process_refund(sale_id, "Second", None, today=START)

        assert exc.value.code == ErrorCode.ALREADY_REFUNDED
        assert (await reload(db, Agency, seed.agency_id)).balance == Decimal("1120.00")

    @pytest.mark.asyncio
    async def test_refund_after_end_date_rejected(self, db, seed):
        sale_id = await _balance_sale(db, seed)

        with pytest.raises(SettlementError) as exc:
            await RefundService(db).process_refund(
                sale_id, "Too late", None, today=END + timedelta(days=1)
            )

        assert exc.value.code == ErrorCode.CONTRACT_EXPIRED
        assert (await reload(db, Sale, sale_id)).is_refunded is False
