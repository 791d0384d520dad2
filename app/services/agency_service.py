"""
Agency and branch rate management.

Enforces branch.commission_rate <= agency.commission_rate on every write of
either rate. Both paths lock the agency row first, so a concurrent agency
rate cut and branch rate raise cannot both pass the check.
"""

import logging
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SettlementError, ErrorCode
from app.models.agency import Agency, Branch
from app.schemas.agency import AgencyCreate, AgencyUpdate, BranchCreate, BranchUpdate
from app.services.commission_service import validate_rate, ensure_rate_cap

logger = logging.getLogger(__name__)


class AgencyService:
    """Create/update agencies and branches while keeping the rate cap."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_agency(self, agency_id: UUID, lock: bool = False) -> Agency:
        stmt = select(Agency).where(Agency.id == agency_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        agency = result.scalar_one_or_none()
        if not agency:
            raise SettlementError.not_found("Agency")
        return agency

    async def get_branch(self, branch_id: UUID, lock: bool = False) -> Branch:
        stmt = select(Branch).where(Branch.id == branch_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        branch = result.scalar_one_or_none()
        if not branch:
            raise SettlementError.not_found("Branch")
        return branch

    async def list_branches(self, agency_id: UUID) -> List[Branch]:
        result = await self.db.execute(
            select(Branch).where(Branch.agency_id == agency_id).order_by(Branch.name)
        )
        return list(result.scalars().all())

    async def create_agency(self, data: AgencyCreate) -> Agency:
        agency = Agency(
            **data.model_dump(exclude={"commission_rate"}),
            commission_rate=validate_rate(data.commission_rate),
            balance=Decimal("0"),
        )
        self.db.add(agency)
        await self.db.flush()
        logger.info(f"Agency created: {agency.id} ({agency.name}) at {agency.commission_rate}%")
        return agency

    async def update_agency(self, agency_id: UUID, data: AgencyUpdate) -> Agency:
        """
        Update an agency. Lowering its rate below any branch rate is rejected.
        """
        agency = await self.get_agency(agency_id, lock=True)
        changes = data.model_dump(exclude_unset=True)

        if "commission_rate" in changes:
            new_rate = validate_rate(changes.pop("commission_rate"))
            result = await self.db.execute(
                select(func.max(Branch.commission_rate)).where(Branch.agency_id == agency_id)
            )
            highest_branch_rate = result.scalar()
            if highest_branch_rate is not None:
                ensure_rate_cap(highest_branch_rate, new_rate)
            agency.commission_rate = new_rate

        for key, value in changes.items():
            setattr(agency, key, value)

        await self.db.flush()
        return agency

    async def create_branch(self, data: BranchCreate) -> Branch:
        agency = await self.get_agency(data.agency_id, lock=True)
        rate = validate_rate(data.commission_rate)
        ensure_rate_cap(rate, agency.commission_rate)

        branch = Branch(
            **data.model_dump(exclude={"commission_rate"}),
            commission_rate=rate,
            balance=Decimal("0"),
        )
        self.db.add(branch)
        await self.db.flush()
        logger.info(f"Branch created: {branch.id} under agency {agency.id} at {rate}%")
        return branch

    async def update_branch(self, branch_id: UUID, data: BranchUpdate) -> Branch:
        branch = await self.get_branch(branch_id)
        changes = data.model_dump(exclude_unset=True)

        if "commission_rate" in changes:
            if changes["commission_rate"] is None:
                raise SettlementError("commission_rate is required")
            agency = await self.get_agency(branch.agency_id, lock=True)
            new_rate = validate_rate(changes.pop("commission_rate"))
            ensure_rate_cap(new_rate, agency.commission_rate)
            branch.commission_rate = new_rate

        for key, value in changes.items():
            setattr(branch, key, value)

        await self.db.flush()
        return branch

    async def get_branch_commission_rate(self, branch_id: UUID) -> dict:
        branch = await self.get_branch(branch_id)
        agency = await self.get_agency(branch.agency_id)
        return {
            "branch_id": branch.id,
            "commission_rate": branch.commission_rate,
            "agency_max_commission": agency.commission_rate,
        }

    async def resolve_sale_owner(
        self,
        agency_id: Optional[UUID],
        branch_id: Optional[UUID],
    ) -> tuple[Optional[Agency], Optional[Branch]]:
        """
        Load the agency/branch a sale is booked under.

        A branch implies its agency; a mismatching agency id is rejected.
        """
        branch = await self.get_branch(branch_id) if branch_id else None
        if branch is not None:
            if agency_id and agency_id != branch.agency_id:
                raise SettlementError(
                    "Branch does not belong to the given agency",
                    code=ErrorCode.VALIDATION,
                )
            agency_id = branch.agency_id
        agency = await self.get_agency(agency_id) if agency_id else None
        return agency, branch
