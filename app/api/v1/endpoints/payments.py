"""
Payment API endpoints for PayTR integration.

Handles:
- PayTR payment notification (callback), POST form or GET query

The callback is called by PayTR servers, not by users, so it carries no
bearer token; authenticity comes from the notification hash.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from app.api.deps import DB, PayTR
from app.core.exceptions import SettlementError
from app.schemas.payment import PayTRCallback
from app.services.payment_callback_service import PaymentCallbackService, CALLBACK_ACK

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Payments"])


def _parse_callback(fields) -> PayTRCallback:
    try:
        return PayTRCallback.from_fields(fields)
    except ValidationError as e:
        logger.warning(f"Malformed PayTR callback: {e.errors()}")
        raise SettlementError("Malformed PayTR notification")


async def _handle(callback: PayTRCallback, db, paytr) -> PlainTextResponse:
    result = await PaymentCallbackService(db, paytr).handle(callback)
    logger.info(
        f"PayTR callback for sale {result.sale_id} handled "
        f"(status {callback.status}, applied={result.applied})"
    )
    return PlainTextResponse(CALLBACK_ACK)


@router.post(
    "/paytr/callback",
    response_class=PlainTextResponse,
    summary="PayTR notification handler",
    include_in_schema=False,
)
async def paytr_callback(request: Request, db: DB, paytr: PayTR):
    """
    Handle a PayTR payment notification.

    Responds with the literal body "OK" once the hash is valid, also for
    duplicate and late deliveries.
    """
    form = await request.form()
    return await _handle(_parse_callback(form), db, paytr)


@router.get(
    "/paytr/callback",
    response_class=PlainTextResponse,
    include_in_schema=False,
)
async def paytr_callback_query(request: Request, db: DB, paytr: PayTR):
    """Same as the POST handler, reading the fields from the query string."""
    return await _handle(_parse_callback(request.query_params), db, paytr)
