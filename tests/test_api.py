"""
HTTP-level tests for the settlement endpoints.

Covers:
- Error envelope for business rule violations
- Role checks and commission visibility
- PayTR callback acknowledgement
"""

import uuid
import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal

from httpx import AsyncClient, ASGITransport

from app.core.exceptions import ErrorCode
from app.core.security import create_access_token, UserRole
from app.database import get_db
from app.main import app
from app.models.agency import Agency
from app.models.payment import Payment, PaymentStatus
from app.services.paytr_service import get_paytr_service, sanitize_merchant_oid
from app.services.sms_service import get_sms_service
from tests.factories import reload, set_agency_balance, make_sale_request


def _auth(seed, role: UserRole, with_branch: bool = True) -> dict:
    claims = {"role": role.value, "agency_id": str(seed.agency_id)}
    if with_branch:
        claims["branch_id"] = str(seed.branch_id)
    token = create_access_token(uuid.uuid4(), additional_claims=claims)
    return {"Authorization": f"Bearer {token}"}


def _sale_payload(seed, **kwargs) -> dict:
    kwargs.setdefault("start", date.today())
    return make_sale_request(seed.package_id, **kwargs).model_dump(mode="json")


@pytest_asyncio.fixture
async def client(db, paytr, sms):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_paytr_service] = lambda: paytr
    app.dependency_overrides[get_sms_service] = lambda: sms

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestCompleteSaleEndpoint:

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, client, seed):
        response = await client.post(
            "/api/v1/sales/complete",
            json=_sale_payload(seed),
            headers=_auth(seed, UserRole.BRANCH_ADMIN),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == ErrorCode.INSUFFICIENT_FUNDS.value
        assert "error" in body

    @pytest.mark.asyncio
    async def test_gateway_sale_returns_token(self, client, seed):
        response = await client.post(
            "/api/v1/sales/complete",
            json=_sale_payload(seed, payment_type="GATEWAY"),
            headers=_auth(seed, UserRole.BRANCH_ADMIN),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["gateway"]["token"] == "tok-123"
        assert body["gateway_error"] is None
        assert body["sale"]["payments"][0]["status"] == PaymentStatus.PENDING.value
        assert Decimal(body["sale"]["branch_commission"]) == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, client, seed):
        response = await client.post("/api/v1/sales/complete", json=_sale_payload(seed))
        assert response.status_code in (401, 403)


class TestSaleVisibility:

    @pytest.mark.asyncio
    async def test_branch_user_does_not_see_commission(self, client, seed):
        created = await client.post(
            "/api/v1/sales/complete",
            json=_sale_payload(seed, payment_type="GATEWAY"),
            headers=_auth(seed, UserRole.BRANCH_ADMIN),
        )
        sale_id = created.json()["sale"]["id"]

        response = await client.get(
            f"/api/v1/sales/{sale_id}", headers=_auth(seed, UserRole.BRANCH_USER)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["commission"] is None
        assert body["branch_commission"] is None
        assert body["agency_commission"] is None
        assert Decimal(body["price"]) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_branch_user_cannot_refund(self, client, seed):
        created = await client.post(
            "/api/v1/sales/complete",
            json=_sale_payload(seed, payment_type="GATEWAY"),
            headers=_auth(seed, UserRole.BRANCH_ADMIN),
        )
        sale_id = created.json()["sale"]["id"]

        response = await client.post(
            f"/api/v1/sales/{sale_id}/refund",
            json={"reason": "Customer request"},
            headers=_auth(seed, UserRole.BRANCH_USER),
        )

        assert response.status_code == 403


class TestRefundEndpoints:

    @pytest.mark.asyncio
    async def test_quote_then_refund(self, client, db, seed):
        await set_agency_balance(db, seed.agency_id, "1200")
        created = await client.post(
            "/api/v1/sales/complete",
            json=_sale_payload(seed, price="1200.00"),
            headers=_auth(seed, UserRole.BRANCH_ADMIN),
        )
        sale_id = created.json()["sale"]["id"]
        admin = _auth(seed, UserRole.AGENCY_ADMIN, with_branch=False)

        quote = await client.get(f"/api/v1/sales/{sale_id}/refund", headers=admin)
        assert quote.status_code == 200
        assert Decimal(quote.json()["calculation"]["refund_amount"]) == Decimal("1000.00")

        refunded = await client.post(
            f"/api/v1/sales/{sale_id}/refund", json={"reason": "Customer request"}, headers=admin
        )
        assert refunded.status_code == 200
        assert refunded.json()["is_refunded"] is True

        again = await client.post(
            f"/api/v1/sales/{sale_id}/refund", json={"reason": "Again"}, headers=admin
        )
        assert again.status_code == 400
        assert again.json()["code"] == ErrorCode.ALREADY_REFUNDED.value

        assert (await reload(db, Agency, seed.agency_id)).balance == Decimal("1120.00")


class TestPayTRCallbackEndpoint:

    async def _pending_sale(self, client, seed):
        created = await client.post(
            "/api/v1/sales/complete",
            json=_sale_payload(seed, payment_type="GATEWAY"),
            headers=_auth(seed, UserRole.BRANCH_ADMIN),
        )
        sale = created.json()["sale"]
        return sale["id"], sale["payments"][0]["id"]

    @pytest.mark.asyncio
    async def test_valid_callback_acknowledged(self, client, db, seed, paytr):
        sale_id, payment_id = await self._pending_sale(client, seed)
        oid = sanitize_merchant_oid(sale_id)
        form = {
            "merchant_oid": oid,
            "status": "success",
            "total_amount": "100000",
            "hash": paytr.callback_hash(oid, "success", "100000"),
        }

        first = await client.post("/api/v1/payments/paytr/callback", data=form)
        second = await client.post("/api/v1/payments/paytr/callback", data=form)

        assert first.status_code == 200
        assert first.text == "OK"
        assert second.text == "OK"
        payment = await reload(db, Payment, uuid.UUID(payment_id))
        assert payment.status == PaymentStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_tampered_callback_rejected(self, client, db, seed, paytr):
        sale_id, payment_id = await self._pending_sale(client, seed)
        oid = sanitize_merchant_oid(sale_id)
        form = {
            "merchant_oid": oid,
            "status": "success",
            "total_amount": "1",
            "hash": paytr.callback_hash(oid, "success", "100000"),
        }

        response = await client.post("/api/v1/payments/paytr/callback", data=form)

        assert response.status_code == 400
        assert response.json()["code"] == ErrorCode.INVALID_HASH.value
        payment = await reload(db, Payment, uuid.UUID(payment_id))
        assert payment.status == PaymentStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self, client):
        response = await client.post("/api/v1/payments/paytr/callback", data={"status": "success"})
        assert response.status_code == 400


class TestBranchEndpoints:

    @pytest.mark.asyncio
    async def test_rate_above_agency_rejected(self, client, seed):
        response = await client.patch(
            f"/api/v1/branches/{seed.branch_id}",
            json={"commission_rate": "40"},
            headers=_auth(seed, UserRole.AGENCY_ADMIN, with_branch=False),
        )

        assert response.status_code == 400
        assert response.json()["code"] == ErrorCode.RATE_CAP_VIOLATION.value

    @pytest.mark.asyncio
    async def test_commission_rate_view(self, client, seed):
        response = await client.get(
            f"/api/v1/branches/{seed.branch_id}/commission-rate",
            headers=_auth(seed, UserRole.BRANCH_ADMIN),
        )

        assert response.status_code == 200
        assert Decimal(response.json()["agency_max_commission"]) == Decimal("25")
