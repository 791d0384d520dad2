"""
Agency/branch balance ledger.

Balances hold earned, spendable commission. Every change runs inside the
caller's transaction: the account row is re-read with SELECT ... FOR UPDATE,
checked and written before the caller commits, so two concurrent debits
against the same agency serialise on the row lock.
"""

import logging
from decimal import Decimal
from typing import Optional, Type, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SettlementError, ErrorCode
from app.models.agency import Agency, Branch
from app.services.commission_service import to_money

logger = logging.getLogger(__name__)

Account = Union[Agency, Branch]


class LedgerService:
    """Credit/debit agency and branch balances within an open transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _lock_account(self, model: Type[Account], account_id: UUID) -> Account:
        """Load the account row with a row lock and fresh column values."""
        result = await self.db.execute(
            select(model)
            .where(model.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise SettlementError.not_found(model.__name__)
        return account

    async def credit(
        self,
        model: Type[Account],
        account_id: UUID,
        amount: Optional[Decimal],
    ) -> Decimal:
        """
        Add amount to the account balance. None/zero amounts are a no-op.

        Returns:
            The balance after the credit
        """
        account = await self._lock_account(model, account_id)
        amount = to_money(amount or 0)
        if amount < 0:
            raise SettlementError("Credit amount cannot be negative")
        if amount == 0:
            return account.balance

        account.balance = to_money(account.balance or 0) + amount
        await self.db.flush()

        logger.info(f"Credited {amount} to {model.__name__} {account_id}, balance {account.balance}")
        return account.balance

    async def debit(
        self,
        model: Type[Account],
        account_id: UUID,
        amount: Decimal,
    ) -> Decimal:
        """
        Subtract amount from the account balance.

        Raises:
            SettlementError(INSUFFICIENT_FUNDS) when the balance is smaller
            than amount; nothing is written in that case.
        """
        account = await self._lock_account(model, account_id)
        amount = to_money(amount or 0)
        if amount < 0:
            raise SettlementError("Debit amount cannot be negative")

        current_balance = to_money(account.balance or 0)
        if current_balance < amount:
            logger.warning(
                f"Insufficient balance on {model.__name__} {account_id}: "
                f"available {current_balance}, required {amount}"
            )
            raise SettlementError(
                f"Insufficient balance. Available: {current_balance:.2f}, required: {amount:.2f}",
                code=ErrorCode.INSUFFICIENT_FUNDS,
                details={"available": str(current_balance), "required": str(amount)},
            )

        account.balance = current_balance - amount
        await self.db.flush()

        logger.info(f"Debited {amount} from {model.__name__} {account_id}, balance {account.balance}")
        return account.balance

    async def credit_agency(self, agency_id: UUID, amount: Optional[Decimal]) -> Decimal:
        return await self.credit(Agency, agency_id, amount)

    async def credit_branch(self, branch_id: UUID, amount: Optional[Decimal]) -> Decimal:
        return await self.credit(Branch, branch_id, amount)

    async def debit_agency(self, agency_id: UUID, amount: Decimal) -> Decimal:
        return await self.debit(Agency, agency_id, amount)
