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

"""Rental management routes."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gearshare.database import get_db
from gearshare.middleware.auth import can_view_rental, get_current_user, is_equipment_owner
from gearshare.models.rental import (
    RENTAL_CANCELLED,
    RENTAL_COMPLETED,
    RENTAL_CONFIRMED,
    RENTAL_PENDING,
    Rental,
)
from gearshare.models.user import User
from gearshare.services.notifications import emit_notification
from gearshare.services.payment_client import StripeClient, get_payment_client
from gearshare.services.payments import cancel_processor_objects
from gearshare.services.rentals import (
    get_rental,
    list_rentals_for_owner,
    list_rentals_for_user,
    owner_summary,
    transition,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rentals")


def _require_owner(user: User, rental: Rental, action: str) -> None:
    if not is_equipment_owner(user, rental.equipment):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the equipment owner can {action} this rental",
        )


@router.get("")
async def list_rentals(
    role: str = Query("renter", pattern="^(renter|owner)$"),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List the caller's rentals as renter or as equipment owner."""
    if role == "owner":
        rentals = list_rentals_for_owner(db, current_user.id, status_filter)
    else:
        rentals = list_rentals_for_user(db, current_user.id, status_filter)

    return {
        "success": True,
        "rentals": [r.to_dict() for r in rentals],
    }


@router.get("/summary")
async def get_owner_summary(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Revenue and rental counts for the owner dashboard."""
    return {
        "success": True,
        "summary": owner_summary(db, current_user.id),
    }


@router.get("/{rental_id}")
async def get_rental_detail(
    rental_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Get rental details."""
    rental = get_rental(db, rental_id)

    if not can_view_rental(current_user, rental):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot view this rental",
        )

    return {
        "success": True,
        "rental": rental.to_dict(),
    }


@router.post("/{rental_id}/confirm")
async def confirm_rental(
    rental_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Owner accepts a pending rental."""
    rental = get_rental(db, rental_id)
    _require_owner(current_user, rental, "confirm")

    transition(db, rental.id, RENTAL_CONFIRMED)
    emit_notification(
        db,
        rental.user_id,
        "rental_confirmed",
        metadata={"rental_id": rental.id, "equipment_id": rental.equipment_id},
    )
    db.commit()
    db.refresh(rental)

    return {
        "success": True,
        "rental": rental.to_dict(),
        "message": "Rental confirmed",
    }


@router.post("/{rental_id}/cancel")
async def cancel_rental(
    rental_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: StripeClient = Depends(get_payment_client),
):
    """Cancel a pending or confirmed rental (owner or renter)."""
    rental = get_rental(db, rental_id)

    is_renter = rental.user_id == current_user.id
    if not is_renter and not is_equipment_owner(current_user, rental.equipment):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot cancel this rental",
        )

    was_pending = rental.status == RENTAL_PENDING
    transition(db, rental.id, RENTAL_CANCELLED)
    logger.info(f"Rental {rental.id} cancelled by user {current_user.id}")

    # Tell the other party
    recipient_id = rental.equipment.owner_id if is_renter else rental.user_id
    emit_notification(
        db,
        recipient_id,
        "rental_cancelled",
        metadata={"rental_id": rental.id, "equipment_id": rental.equipment_id},
    )
    db.commit()
    db.refresh(rental)

    if was_pending:
        await cancel_processor_objects(client, rental)

    return {
        "success": True,
        "rental": rental.to_dict(),
        "message": "Rental cancelled",
    }


@router.post("/{rental_id}/complete")
async def complete_rental(
    rental_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Owner marks a confirmed rental as completed once it has ended."""
    rental = get_rental(db, rental_id)
    _require_owner(current_user, rental, "complete")

    if rental.end_date > datetime.utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Rental has not ended yet",
        )

    transition(db, rental.id, RENTAL_COMPLETED)
    emit_notification(
        db,
        rental.user_id,
        "rental_completed",
        metadata={"rental_id": rental.id, "equipment_id": rental.equipment_id},
    )
    db.commit()
    db.refresh(rental)

    return {
        "success": True,
        "rental": rental.to_dict(),
        "message": "Rental completed",
    }
