# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Equipment catalog routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from gearshare.database import get_db
from gearshare.middleware.auth import get_current_user, is_equipment_owner
from gearshare.models.equipment import (
    EQUIPMENT_AVAILABLE,
    EQUIPMENT_REPAIR,
    EQUIPMENT_STATUSES,
    Equipment,
)
from gearshare.models.user import User
from gearshare.services.pricing import quote

router = APIRouter(prefix="/api/equipment")


class EquipmentStatusUpdate(BaseModel):
    """Owner status change request."""

    status: str


def get_equipment_or_404(db: Session, equipment_id: int) -> Equipment:
    """Load equipment or raise 404."""
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not equipment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Equipment not found",
        )
    return equipment


@router.get("")
async def list_equipment(
    status_filter: Optional[str] = Query(None, alias="status"),
    category: Optional[str] = None,
    owner_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """List equipment with optional filters."""
    query = db.query(Equipment)

    if status_filter:
        if status_filter not in EQUIPMENT_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status: {status_filter}",
            )
        query = query.filter(Equipment.status == status_filter)

    if category:
        query = query.filter(Equipment.category == category)

    if owner_id:
        query = query.filter(Equipment.owner_id == owner_id)

    equipment_list = query.order_by(Equipment.created_at.desc(), Equipment.id.desc()).all()

    return {
        "success": True,
        "equipment": [e.to_dict() for e in equipment_list],
    }


@router.get("/{equipment_id}")
async def get_equipment(
    equipment_id: int,
    db: Session = Depends(get_db),
):
    """Get equipment details."""
    equipment = get_equipment_or_404(db, equipment_id)
    return {
        "success": True,
        "equipment": equipment.to_dict(),
    }


@router.get("/{equipment_id}/quote")
async def get_quote(
    equipment_id: int,
    start_date: str,
    end_date: str,
    db: Session = Depends(get_db),
):
    """Price a rental of the equipment between two ISO8601 dates."""
    equipment = get_equipment_or_404(db, equipment_id)
    return {
        "success": True,
        "quote": quote(equipment, start_date, end_date),
        "available": equipment.is_available,
    }


@router.patch("/{equipment_id}/status")
async def update_equipment_status(
    equipment_id: int,
    data: EquipmentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Owner takes equipment out for repair or back into service.

    The rented status is managed by the rental workflow only.
    """
    equipment = get_equipment_or_404(db, equipment_id)

    if not is_equipment_owner(current_user, equipment):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the owner can change equipment status",
        )

    if data.status not in (EQUIPMENT_AVAILABLE, EQUIPMENT_REPAIR):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Status can only be set to 'available' or 'repair'",
        )

    # Conditional update so a concurrent booking hold is never overwritten
    updated = (
        db.query(Equipment)
        .filter(
            Equipment.id == equipment_id,
            Equipment.status.in_((EQUIPMENT_AVAILABLE, EQUIPMENT_REPAIR)),
        )
        .update({Equipment.status: data.status})
    )
    if updated != 1:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Equipment is currently rented",
        )

    db.commit()
    db.refresh(equipment)

    return {
        "success": True,
        "equipment": equipment.to_dict(),
        "message": f"Equipment marked {data.status}",
    }
