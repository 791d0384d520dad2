"""
Sale API endpoints.

Handles:
- Complete sale (customer + vehicle + sale + payment in one transaction)
- Sale lookup
- PayTR iframe token (re)request for card payments
- Refund quote and refund
"""
import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.deps import DB, CurrentUser, PayTR, SMS, require_roles
from app.core.security import UserRole, Principal
from app.models.sale import Sale
from app.schemas.payment import TokenRequest
from app.schemas.sale import (
    CompleteSaleRequest,
    CompleteSaleResponse,
    SaleResponse,
    GatewayTokenResponse,
    RefundQuoteResponse,
    RefundRequest,
)
from app.services.paytr_service import PayTRTokenResult, get_user_ip
from app.services.refund_service import RefundService
from app.services.sale_service import SaleService

logger = logging.getLogger(__name__)

router = APIRouter()

COMMISSION_FIELDS = ("commission", "branch_commission", "agency_commission")


def _ensure_visible(sale: Sale, user: Principal) -> None:
    """Callers only see sales of their own agency/branch."""
    if user.is_super_admin:
        return
    if user.agency_id and sale.agency_id != user.agency_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
    if user.branch_id and sale.branch_id != user.branch_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")


def _sale_response(sale: Sale, user: Principal) -> SaleResponse:
    response = SaleResponse.model_validate(sale)
    if not user.can_view_commission:
        response = response.model_copy(update={field: None for field in COMMISSION_FIELDS})
    return response


def _token_response(sale_id: UUID, result: PayTRTokenResult) -> GatewayTokenResponse:
    return GatewayTokenResponse(
        sale_id=sale_id,
        merchant_oid=result.merchant_oid,
        token=result.token,
        iframe_url=result.iframe_url,
    )


@router.post(
    "/complete",
    response_model=CompleteSaleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Complete a sale",
    description="Create customer, vehicle, sale and payment atomically.",
)
async def complete_sale(
    data: CompleteSaleRequest,
    request: Request,
    db: DB,
    paytr: PayTR,
    sms: SMS,
    current_user: CurrentUser,
):
    """
    Complete a sale.

    BALANCE payments are settled immediately from the agency balance.
    GATEWAY payments stay PENDING; the response carries the PayTR iframe
    token, or gateway_error when it could not be obtained (the sale is
    still committed and the token can be requested again).
    """
    service = SaleService(db, paytr=paytr, sms=sms)
    outcome = await service.complete_sale(data, current_user, user_ip=get_user_ip(request))

    return CompleteSaleResponse(
        sale=_sale_response(outcome.sale, current_user),
        gateway=_token_response(outcome.sale.id, outcome.gateway) if outcome.gateway else None,
        gateway_error=outcome.gateway_error,
    )


@router.get("/{sale_id}", response_model=SaleResponse)
async def get_sale(sale_id: UUID, db: DB, current_user: CurrentUser):
    """Get a sale with its payments."""
    sale = await SaleService(db).get_sale(sale_id)
    _ensure_visible(sale, current_user)
    return _sale_response(sale, current_user)


@router.post("/{sale_id}/payment-token", response_model=GatewayTokenResponse)
async def request_payment_token(
    sale_id: UUID,
    request: Request,
    db: DB,
    paytr: PayTR,
    current_user: CurrentUser,
    data: Optional[TokenRequest] = None,
):
    """
    (Re)request a PayTR iframe token for a sale whose card payment is
    still PENDING. Nothing is written; safe to retry after a timeout.
    """
    service = SaleService(db, paytr=paytr)
    sale = await service.get_sale(sale_id)
    _ensure_visible(sale, current_user)

    data = data or TokenRequest()
    result = await service.request_gateway_token(
        sale_id,
        user_ip=get_user_ip(request),
        email=data.email,
        merchant_ok_url=data.merchant_ok_url,
        merchant_fail_url=data.merchant_fail_url,
    )
    return _token_response(sale_id, result)


@router.get("/{sale_id}/refund", response_model=RefundQuoteResponse)
async def calculate_refund(
    sale_id: UUID,
    db: DB,
    current_user: CurrentUser,
    as_of: Optional[date] = None,
):
    """Prorated refund quote. Read only."""
    sale = await SaleService(db).get_sale(sale_id)
    _ensure_visible(sale, current_user)
    return await RefundService(db).calculate_refund(sale_id, today=as_of)


@router.post(
    "/{sale_id}/refund",
    response_model=SaleResponse,
    dependencies=[Depends(require_roles(UserRole.SUPER_ADMIN, UserRole.AGENCY_ADMIN))],
)
async def process_refund(
    sale_id: UUID,
    data: RefundRequest,
    db: DB,
    current_user: CurrentUser,
):
    """
    Refund a sale.

    BALANCE payments are credited back to the agency balance; card
    payments are only marked REFUNDED.
    """
    sale = await SaleService(db).get_sale(sale_id)
    _ensure_visible(sale, current_user)

    refunded = await RefundService(db).process_refund(
        sale_id, data.reason, actor_id=current_user.user_id
    )
    logger.info(f"Refund of sale {sale_id} by {current_user.user_id}")
    return _sale_response(refunded, current_user)
