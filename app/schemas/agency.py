"""Agency and branch schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from app.schemas.base import BaseCreateSchema, BaseUpdateSchema, BaseResponseSchema


class AgencyCreate(BaseCreateSchema):
    name: str = Field(..., min_length=2, max_length=200)
    commission_rate: Decimal = Field(..., ge=0, le=100)
    tax_number: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    account_name: Optional[str] = None
    iban: Optional[str] = None


class AgencyUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    account_name: Optional[str] = None
    iban: Optional[str] = None


class AgencyResponse(BaseResponseSchema):
    id: UUID
    name: str
    commission_rate: Decimal
    balance: Decimal
    status: str
    created_at: datetime


class BranchCreate(BaseCreateSchema):
    agency_id: UUID
    name: str = Field(..., min_length=2, max_length=200)
    commission_rate: Decimal = Field(..., ge=0, le=100)
    address: Optional[str] = None
    phone: Optional[str] = None
    account_name: Optional[str] = None
    iban: Optional[str] = None


class BranchUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    address: Optional[str] = None
    phone: Optional[str] = None
    account_name: Optional[str] = None
    iban: Optional[str] = None


class BranchResponse(BaseResponseSchema):
    id: UUID
    agency_id: UUID
    name: str
    commission_rate: Decimal
    balance: Decimal
    status: str
    created_at: datetime


class BranchCommissionRateResponse(BaseResponseSchema):
    """A branch's rate next to the cap imposed by its agency."""
    branch_id: UUID
    commission_rate: Decimal
    agency_max_commission: Decimal
