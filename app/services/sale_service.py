"""
Sale settlement: the complete-sale transaction.

complete_sale runs every step below in one database transaction and either
commits all of them or none:

1. Resolve the selling agency/branch
2. Upsert the customer (by id) and the vehicle (by normalised plate)
3. Split the commission with the current rates
4. Create the sale with a generated policy number
5. BALANCE: debit the agency for the sale price
6. Credit branch/agency commission
7. Create the payment (COMPLETED for BALANCE, PENDING for GATEWAY)

Only after the commit does it send the confirmation SMS and, for GATEWAY
sales, ask PayTR for an iframe token. Neither can undo the sale.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import SettlementError, ErrorCode, UpstreamUnavailableError
from app.core.security import Principal
from app.models.agency import Agency, Branch
from app.models.customer import Customer, Vehicle, normalize_plate
from app.models.package import Package
from app.models.payment import Payment, PaymentType, PaymentStatus
from app.models.sale import Sale
from app.schemas.sale import CompleteSaleRequest, CustomerInput, VehicleInput
from app.services.agency_service import AgencyService
from app.services.commission_service import split_commission, to_money
from app.services.ledger_service import LedgerService
from app.services.paytr_service import (
    PayTRService,
    PayTRTokenRequest,
    PayTRTokenResult,
    BasketItem,
    create_basket,
    to_minor_units,
)
from app.services.sms_service import SMSService

logger = logging.getLogger(__name__)

POLICY_PREFIX = "POL"
POLICY_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_policy_number() -> str:
    """POL + epoch milliseconds + 4 random characters."""
    suffix = "".join(secrets.choice(POLICY_SUFFIX_ALPHABET) for _ in range(4))
    return f"{POLICY_PREFIX}{int(time.time() * 1000)}{suffix}"


@dataclass
class SaleOutcome:
    """Committed sale plus the result of the post-commit token request."""
    sale: Sale
    gateway: Optional[PayTRTokenResult] = None
    gateway_error: Optional[str] = None


class SaleService:
    """Complete-sale transaction and gateway token requests for sales."""

    def __init__(
        self,
        db: AsyncSession,
        paytr: Optional[PayTRService] = None,
        sms: Optional[SMSService] = None,
    ):
        self.db = db
        self.paytr = paytr
        self.sms = sms

    # ==================== READS ====================

    async def get_sale(self, sale_id: UUID) -> Sale:
        result = await self.db.execute(
            select(Sale)
            .options(
                selectinload(Sale.payments),
                selectinload(Sale.customer),
                selectinload(Sale.vehicle),
                selectinload(Sale.package),
            )
            .where(Sale.id == sale_id)
            .execution_options(populate_existing=True)
        )
        sale = result.scalar_one_or_none()
        if not sale:
            raise SettlementError.not_found("Sale")
        return sale

    async def _get_package(self, package_id: UUID) -> Package:
        package = await self.db.get(Package, package_id)
        if not package:
            raise SettlementError.not_found("Package")
        return package

    # ==================== UPSERTS ====================

    async def _upsert_customer(
        self,
        data: CustomerInput,
        agency: Optional[Agency],
        branch: Optional[Branch],
        principal: Principal,
    ) -> Customer:
        fields = data.model_dump(exclude={"id"})

        if data.id:
            customer = await self.db.get(Customer, data.id)
            if not customer:
                raise SettlementError.not_found("Customer")
            for key, value in fields.items():
                setattr(customer, key, value)
        else:
            customer = Customer(
                **fields,
                agency_id=agency.id if agency else None,
                branch_id=branch.id if branch else None,
                created_by=principal.user_id,
            )
            self.db.add(customer)

        await self.db.flush()
        return customer

    async def _upsert_vehicle(
        self,
        data: VehicleInput,
        customer: Customer,
        agency: Optional[Agency],
        branch: Optional[Branch],
    ) -> Vehicle:
        plate = normalize_plate(data.plate)
        if not plate:
            raise SettlementError("Vehicle plate is required")

        fields = {
            "customer_id": customer.id,
            "is_foreign_plate": data.is_foreign_plate,
            "registration_serial": (data.registration_serial or "").upper() or None,
            "registration_number": data.registration_number or None,
            "brand_id": data.brand_id,
            "model_id": data.model_id,
            "model_year": data.model_year,
            "usage_type": data.usage_type.value,
        }

        result = await self.db.execute(select(Vehicle).where(Vehicle.plate == plate))
        vehicle = result.scalar_one_or_none()

        if vehicle:
            for key, value in fields.items():
                setattr(vehicle, key, value)
        else:
            vehicle = Vehicle(
                **fields,
                plate=plate,
                agency_id=agency.id if agency else None,
                branch_id=branch.id if branch else None,
            )
            self.db.add(vehicle)

        await self.db.flush()
        return vehicle

    # ==================== COMPLETE SALE ====================

    @staticmethod
    def _sale_scope(data: CompleteSaleRequest, principal: Principal) -> tuple[Optional[UUID], Optional[UUID]]:
        """The caller's own agency/branch wins over ids in the request body."""
        agency_id = principal.agency_id or data.agency_id
        branch_id = principal.branch_id or data.branch_id
        return agency_id, branch_id

    async def complete_sale(
        self,
        data: CompleteSaleRequest,
        principal: Principal,
        user_ip: Optional[str] = None,
    ) -> SaleOutcome:
        """
        Create customer, vehicle, sale, ledger entries and payment atomically.

        Raises:
            SettlementError: any validation/business failure; nothing is persisted
        """
        payment_type = data.payment.type
        payer_email = data.payment.email or data.customer.email
        if payment_type == PaymentType.GATEWAY and not payer_email:
            raise SettlementError("An e-mail address is required for card payments")

        agency_id, branch_id = self._sale_scope(data, principal)
        price = to_money(data.sale.price)

        try:
            agency, branch = await AgencyService(self.db).resolve_sale_owner(agency_id, branch_id)
            package = await self._get_package(data.sale.package_id)

            customer = await self._upsert_customer(data.customer, agency, branch, principal)
            vehicle = await self._upsert_vehicle(data.vehicle, customer, agency, branch)

            split = split_commission(
                price,
                branch_rate=branch.commission_rate if branch else None,
                agency_rate=agency.commission_rate if agency else None,
            )

            sale = Sale(
                customer_id=customer.id,
                vehicle_id=vehicle.id,
                agency_id=agency.id if agency else None,
                branch_id=branch.id if branch else None,
                user_id=principal.user_id,
                package_id=package.id,
                price=price,
                commission=split.total,
                branch_commission=split.branch_commission,
                agency_commission=split.agency_commission,
                start_date=data.sale.start_date,
                end_date=data.sale.end_date,
                policy_number=generate_policy_number(),
            )
            self.db.add(sale)
            await self.db.flush()

            ledger = LedgerService(self.db)

            if payment_type == PaymentType.BALANCE:
                if agency is None:
                    raise SettlementError("Balance payment requires an agency")
                await ledger.debit_agency(agency.id, price)

            if branch and split.branch_commission and split.branch_commission > 0:
                await ledger.credit_branch(branch.id, split.branch_commission)
            if agency and split.agency_commission and split.agency_commission > 0:
                await ledger.credit_agency(agency.id, split.agency_commission)

            payment = self._new_payment(sale, payment_type, price)
            self.db.add(payment)

            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Sale for plate {data.vehicle.plate} conflicted with a concurrent write: {e.orig}")
            raise SettlementError(
                "Sale conflicts with a concurrent sale for the same vehicle or customer, retry",
                status_code=409,
                details={"plate": normalize_plate(data.vehicle.plate)},
            )
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Sale {sale.id} ({sale.policy_number}) completed: price {price}, "
            f"commission {split.total}, payment {payment_type.value}/{payment.status}"
        )

        sale = await self.get_sale(sale.id)
        await self._send_confirmation(sale, customer, vehicle)

        outcome = SaleOutcome(sale=sale)
        if payment_type == PaymentType.GATEWAY:
            try:
                outcome.gateway = await self._request_token(
                    sale, customer, package, payer_email, user_ip
                )
            except (SettlementError, UpstreamUnavailableError) as e:
                logger.warning(f"Token request for sale {sale.id} failed after commit: {e}")
                outcome.gateway_error = e.message
        return outcome

    @staticmethod
    def _new_payment(sale: Sale, payment_type: PaymentType, price: Decimal) -> Payment:
        now = datetime.now(timezone.utc)
        if payment_type == PaymentType.BALANCE:
            return Payment(
                sale_id=sale.id,
                agency_id=sale.agency_id,
                amount=price,
                type=PaymentType.BALANCE.value,
                status=PaymentStatus.COMPLETED.value,
                transaction_id=f"BALANCE_{int(now.timestamp() * 1000)}",
                payment_details={
                    "deducted_from_balance": str(price),
                    "payment_date": now.isoformat(),
                },
            )
        return Payment(
            sale_id=sale.id,
            agency_id=sale.agency_id,
            amount=price,
            type=PaymentType.GATEWAY.value,
            status=PaymentStatus.PENDING.value,
            payment_details={"provider": "paytr"},
        )

    async def _send_confirmation(self, sale: Sale, customer: Customer, vehicle: Vehicle) -> None:
        """Best-effort SMS; the sale is already committed."""
        if self.sms is None or not customer.phone:
            return
        try:
            await self.sms.send_sale_confirmation_sms(
                phone=customer.phone,
                customer_name=customer.full_name,
                policy_number=sale.policy_number,
                plate=vehicle.plate,
                end_date=sale.end_date,
            )
        except Exception as e:
            logger.error(f"Confirmation SMS for sale {sale.id} failed: {e}")

    # ==================== GATEWAY TOKEN ====================

    async def _request_token(
        self,
        sale: Sale,
        customer: Optional[Customer],
        package: Package,
        email: str,
        user_ip: Optional[str],
        merchant_ok_url: Optional[str] = None,
        merchant_fail_url: Optional[str] = None,
    ) -> PayTRTokenResult:
        if self.paytr is None:
            raise UpstreamUnavailableError("Payment gateway is not available")

        redirects = self.paytr.redirect_urls(sale.id)
        request = PayTRTokenRequest(
            merchant_oid=str(sale.id),
            email=email,
            payment_amount=to_minor_units(sale.price),
            user_basket=create_basket([BasketItem(name=package.name, price=sale.price)]),
            user_ip=user_ip or "127.0.0.1",
            user_name=customer.full_name if customer else None,
            user_address=customer.address if customer else None,
            user_phone=customer.phone if customer else None,
            merchant_ok_url=merchant_ok_url or redirects["merchant_ok_url"],
            merchant_fail_url=merchant_fail_url or redirects["merchant_fail_url"],
        )
        return await self.paytr.get_token(request)

    async def request_gateway_token(
        self,
        sale_id: UUID,
        user_ip: Optional[str],
        email: Optional[str] = None,
        merchant_ok_url: Optional[str] = None,
        merchant_fail_url: Optional[str] = None,
    ) -> PayTRTokenResult:
        """
        (Re)request an iframe token for a GATEWAY sale still awaiting payment.

        Reads only; safe to call again after a timeout.
        """
        sale = await self.get_sale(sale_id)

        payment = next(
            (p for p in sale.payments if p.type == PaymentType.GATEWAY.value),
            None,
        )
        if payment is None:
            raise SettlementError("Sale has no card payment")
        if payment.status != PaymentStatus.PENDING.value:
            raise SettlementError(
                f"Payment is already {payment.status}",
                status_code=409,
                details={"payment_status": payment.status},
            )
        if sale.is_refunded:
            raise SettlementError("Sale has been refunded", code=ErrorCode.ALREADY_REFUNDED)

        payer_email = email or (sale.customer.email if sale.customer else None)
        if not payer_email:
            raise SettlementError("An e-mail address is required for card payments")

        return await self._request_token(
            sale,
            sale.customer,
            sale.package,
            payer_email,
            user_ip,
            merchant_ok_url=merchant_ok_url,
            merchant_fail_url=merchant_fail_url,
        )
