"""API endpoints for branches and the branch rate cap."""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import DB, CurrentUser, require_roles
from app.core.security import UserRole, Principal
from app.schemas.agency import (
    BranchCreate, BranchUpdate, BranchResponse, BranchCommissionRateResponse,
)
from app.services.agency_service import AgencyService

router = APIRouter()

agency_admins = require_roles(UserRole.SUPER_ADMIN, UserRole.AGENCY_ADMIN)


def _ensure_same_agency(agency_id: UUID, user: Principal) -> None:
    if not user.is_super_admin and user.agency_id != agency_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Branch not found")


@router.post(
    "",
    response_model=BranchResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(agency_admins)],
)
async def create_branch(data: BranchCreate, db: DB, current_user: CurrentUser):
    """Create a branch. Its rate may not exceed the agency's rate."""
    _ensure_same_agency(data.agency_id, current_user)
    branch = await AgencyService(db).create_branch(data)
    await db.commit()
    await db.refresh(branch)
    return branch


@router.patch(
    "/{branch_id}",
    response_model=BranchResponse,
    dependencies=[Depends(agency_admins)],
)
async def update_branch(branch_id: UUID, data: BranchUpdate, db: DB, current_user: CurrentUser):
    service = AgencyService(db)
    existing = await service.get_branch(branch_id)
    _ensure_same_agency(existing.agency_id, current_user)

    branch = await service.update_branch(branch_id, data)
    await db.commit()
    await db.refresh(branch)
    return branch


@router.get("/{branch_id}/commission-rate", response_model=BranchCommissionRateResponse)
async def get_branch_commission_rate(branch_id: UUID, db: DB, current_user: CurrentUser):
    """Branch rate together with the agency cap it must stay under."""
    service = AgencyService(db)
    branch = await service.get_branch(branch_id)
    _ensure_same_agency(branch.agency_id, current_user)
    return await service.get_branch_commission_rate(branch_id)
