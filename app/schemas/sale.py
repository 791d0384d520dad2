"""Sale schemas: complete-sale bundle, sale/payment responses, refunds."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import Field, model_validator

from app.models.customer import UsageType
from app.models.payment import PaymentType
from app.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== Complete Sale Input ====================

class CustomerInput(BaseCreateSchema):
    """Existing customer (id) or the fields of a new one."""
    id: Optional[UUID] = Field(None, description="Existing customer id; omitted to create")
    is_corporate: bool = False
    identity_number: str = Field(..., min_length=10, max_length=11)
    name: str = Field(..., min_length=1, max_length=200)
    surname: Optional[str] = Field(None, max_length=100)
    tax_office: Optional[str] = None
    birth_date: Optional[date] = None
    phone: str = Field(..., min_length=10, max_length=20)
    email: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None


class VehicleInput(BaseCreateSchema):
    """Vehicle fields; matched on the normalised plate."""
    is_foreign_plate: bool = False
    plate: str = Field(..., min_length=2, max_length=20)
    registration_serial: Optional[str] = None
    registration_number: Optional[str] = None
    brand_id: Optional[int] = None
    model_id: Optional[int] = None
    model_year: int = Field(..., ge=1900, le=2100)
    usage_type: UsageType = UsageType.PRIVATE


class SaleInput(BaseCreateSchema):
    """Package and validity of the sale."""
    package_id: UUID
    price: Decimal = Field(..., gt=0, decimal_places=2)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class PaymentMethodInput(BaseCreateSchema):
    """Payment method selection."""
    type: PaymentType
    email: Optional[str] = Field(None, description="Payer e-mail for the gateway (defaults to customer e-mail)")


class CompleteSaleRequest(BaseCreateSchema):
    """Bundle processed atomically by SaleService.complete_sale."""
    customer: CustomerInput
    vehicle: VehicleInput
    sale: SaleInput
    payment: PaymentMethodInput
    agency_id: Optional[UUID] = Field(None, description="Only honoured for callers without an agency")
    branch_id: Optional[UUID] = Field(None, description="Only honoured for callers without a branch")


# ==================== Responses ====================

class PaymentResponse(BaseResponseSchema):
    """Payment row."""
    id: UUID
    sale_id: UUID
    agency_id: Optional[UUID] = None
    amount: Decimal
    type: str
    status: str
    transaction_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SaleResponse(BaseResponseSchema):
    """Materialised sale. Commission fields are None for low-privilege callers."""
    id: UUID
    customer_id: Optional[UUID] = None
    vehicle_id: UUID
    agency_id: Optional[UUID] = None
    branch_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    package_id: UUID
    price: Decimal
    commission: Optional[Decimal] = None
    branch_commission: Optional[Decimal] = None
    agency_commission: Optional[Decimal] = None
    start_date: date
    end_date: date
    policy_number: Optional[str] = None
    is_refunded: bool = False
    refunded_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    refunded_by: Optional[UUID] = None
    created_at: datetime
    payments: List[PaymentResponse] = []


class GatewayTokenResponse(BaseResponseSchema):
    """Iframe token for a GATEWAY sale."""
    sale_id: UUID
    merchant_oid: str
    token: str
    iframe_url: str


class CompleteSaleResponse(BaseResponseSchema):
    """Committed sale plus the gateway token when one was requested."""
    sale: SaleResponse
    gateway: Optional[GatewayTokenResponse] = None
    gateway_error: Optional[str] = Field(
        None,
        description="Why no token was obtained; retry via the token endpoint"
    )


# ==================== Refunds ====================

class RefundSaleSummary(BaseResponseSchema):
    id: UUID
    customer_name: Optional[str] = None
    vehicle_plate: Optional[str] = None
    package_name: Optional[str] = None
    total_price: Decimal
    start_date: date
    end_date: date


class RefundCalculation(BaseResponseSchema):
    """Proration breakdown, every amount rounded to 2 decimals."""
    total_price: Decimal
    vat_amount: Decimal
    net_price: Decimal
    contract_days: int
    used_days: int
    remaining_days: int
    daily_rate: Decimal
    refund_amount: Decimal


class RefundQuoteResponse(BaseResponseSchema):
    sale: RefundSaleSummary
    calculation: RefundCalculation


class RefundRequest(BaseCreateSchema):
    reason: str = Field(..., min_length=3, max_length=1000)
