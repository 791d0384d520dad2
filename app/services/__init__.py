# Services module
from app.services.agency_service import AgencyService
from app.services.ledger_service import LedgerService
from app.services.sale_service import SaleService
from app.services.payment_callback_service import PaymentCallbackService
from app.services.refund_service import RefundService

# External providers
from app.services.paytr_service import PayTRService
from app.services.sms_service import SMSService

__all__ = [
    "AgencyService",
    "LedgerService",
    "SaleService",
    "PaymentCallbackService",
    "RefundService",
    # External providers
    "PayTRService",
    "SMSService",
]
