"""API endpoints for agencies and their commission rate."""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import DB, CurrentUser, require_roles
from app.core.security import UserRole, Principal
from app.schemas.agency import (
    AgencyCreate, AgencyUpdate, AgencyResponse, BranchResponse,
)
from app.services.agency_service import AgencyService

router = APIRouter()


def _ensure_own_agency(agency_id: UUID, user: Principal) -> None:
    if not user.is_super_admin and user.agency_id != agency_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agency not found")


@router.post(
    "",
    response_model=AgencyResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(UserRole.SUPER_ADMIN))],
)
async def create_agency(data: AgencyCreate, db: DB):
    """Create an agency with its base commission rate."""
    agency = await AgencyService(db).create_agency(data)
    await db.commit()
    await db.refresh(agency)
    return agency


@router.get("/{agency_id}", response_model=AgencyResponse)
async def get_agency(agency_id: UUID, db: DB, current_user: CurrentUser):
    _ensure_own_agency(agency_id, current_user)
    return await AgencyService(db).get_agency(agency_id)


@router.patch(
    "/{agency_id}",
    response_model=AgencyResponse,
    dependencies=[Depends(require_roles(UserRole.SUPER_ADMIN))],
)
async def update_agency(agency_id: UUID, data: AgencyUpdate, db: DB):
    """
    Update an agency.

    A new commission rate below any of its branches' rates is rejected
    with RATE_CAP_VIOLATION.
    """
    agency = await AgencyService(db).update_agency(agency_id, data)
    await db.commit()
    await db.refresh(agency)
    return agency


@router.get("/{agency_id}/branches", response_model=List[BranchResponse])
async def list_agency_branches(agency_id: UUID, db: DB, current_user: CurrentUser):
    _ensure_own_agency(agency_id, current_user)
    return await AgencyService(db).list_branches(agency_id)
