"""Builders shared by the test modules."""
import uuid
from datetime import date, timedelta
from decimal import Decimal

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import Principal, UserRole
from app.models.agency import Agency
from app.schemas.sale import (
    CompleteSaleRequest,
    CustomerInput,
    VehicleInput,
    SaleInput,
    PaymentMethodInput,
)

MERCHANT_ID = "123456"
MERCHANT_KEY = "test-merchant-key"
MERCHANT_SALT = "test-merchant-salt"


async def reload(db: AsyncSession, model, entity_id):
    """Fresh row from the database, bypassing the identity map."""
    result = await db.execute(
        select(model).where(model.id == entity_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count(db: AsyncSession, model) -> int:
    result = await db.execute(select(model))
    return len(result.scalars().all())


async def set_agency_balance(db: AsyncSession, agency_id, balance) -> None:
    agency = await reload(db, Agency, agency_id)
    agency.balance = Decimal(str(balance))
    await db.commit()


def make_principal(seed, role: UserRole = UserRole.BRANCH_ADMIN, with_branch: bool = True) -> Principal:
    return Principal(
        user_id=uuid.uuid4(),
        role=role.value,
        agency_id=seed.agency_id,
        branch_id=seed.branch_id if with_branch else None,
    )


def make_sale_request(
    package_id,
    payment_type: str = "BALANCE",
    price: str = "1000.00",
    plate: str = "34 abc 123",
    customer_id=None,
    email: str = "customer@example.com",
    start: date = date(2026, 1, 1),
    days: int = 365,
) -> CompleteSaleRequest:
    return CompleteSaleRequest(
        customer=CustomerInput(
            id=customer_id,
            identity_number="12345678901",
            name="Ayse",
            surname="Yilmaz",
            phone="05321234567",
            email=email,
        ),
        vehicle=VehicleInput(plate=plate, model_year=2020, brand_id=1, model_id=2),
        sale=SaleInput(
            package_id=package_id,
            price=Decimal(price),
            start_date=start,
            end_date=start + timedelta(days=days),
        ),
        payment=PaymentMethodInput(type=payment_type),
    )


def paytr_token_handler(calls: list, body=None, status_code: int = 200):
    """MockTransport handler recording each token request."""
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(
            status_code,
            json=body if body is not None else {"status": "success", "token": "tok-123"},
        )
    return handler
