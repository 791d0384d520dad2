# Models module
from app.models.agency import Agency, Branch, EntityStatus
from app.models.customer import Customer, Vehicle, UsageType, normalize_plate
from app.models.package import Package
from app.models.sale import Sale
from app.models.payment import Payment, PaymentType, PaymentStatus

__all__ = [
    "Agency",
    "Branch",
    "EntityStatus",
    "Customer",
    "Vehicle",
    "UsageType",
    "normalize_plate",
    "Package",
    "Sale",
    "Payment",
    "PaymentType",
    "PaymentStatus",
]
