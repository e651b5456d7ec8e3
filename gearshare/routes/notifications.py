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

"""Notification routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gearshare.database import get_db
from gearshare.middleware.auth import get_current_user
from gearshare.models.user import User
from gearshare.services.notifications import (
    list_notifications,
    mark_all_read,
    mark_read,
    unread_count,
)

router = APIRouter(prefix="/api/notifications")


@router.get("")
async def get_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List the caller's notifications with the unread count."""
    notifications = list_notifications(db, current_user.id, unread_only, min(limit, 200))
    return {
        "success": True,
        "notifications": [n.to_dict() for n in notifications],
        "unread_count": unread_count(db, current_user.id),
    }


@router.post("/read-all")
async def read_all_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Mark every notification as read."""
    updated = mark_all_read(db, current_user.id)
    return {"success": True, "updated": updated}


@router.post("/{notification_id}/read")
async def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Mark one notification as read."""
    notification = mark_read(db, current_user.id, notification_id)
    return {"success": True, "notification": notification.to_dict()}
