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

"""Notification emitter for rental and payment events."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from gearshare.errors import NotFoundError
from gearshare.models.notification import Notification

logger = logging.getLogger(__name__)

# Titles and bodies per notification type
NOTIFICATION_TEMPLATES = {
    "new_rental": (
        "New Rental Request",
        "New rental request for your equipment",
    ),
    "rental_confirmed": (
        "Rental Confirmed",
        "Your rental has been confirmed!",
    ),
    "payment_succeeded": (
        "Payment Successful",
        "Your payment has been processed successfully.",
    ),
    "payment_failed": (
        "Payment Failed",
        "There was an issue processing your payment. Please try again.",
    ),
    "rental_cancelled": (
        "Rental Cancelled",
        "The rental has been cancelled.",
    ),
    "rental_completed": (
        "Rental Completed",
        "The rental has been marked as completed.",
    ),
    "rental_expired": (
        "Reservation Expired",
        "Your reservation expired before payment was completed.",
    ),
}


def emit_notification(
    db: Session,
    user_id: int,
    notification_type: str,
    metadata: Optional[dict] = None,
    title: Optional[str] = None,
    body: Optional[str] = None,
) -> Optional[Notification]:
    """Queue a notification row for a user.

    The row is added to the session and persisted with the caller's commit.
    A second notification of the same type for the same user and rental is
    skipped, so redelivered events do not notify twice.

    Args:
        db: Database session
        user_id: Recipient user id
        notification_type: Type tag, e.g. 'payment_succeeded'
        metadata: Reference payload, usually containing 'rental_id'
        title: Overrides the template title
        body: Overrides the template body

    Returns:
        The new notification, or None if a duplicate already exists.
    """
    metadata = dict(metadata or {})
    default_title, default_body = NOTIFICATION_TEMPLATES.get(
        notification_type, ("Notification", "")
    )
    rental_id = metadata.get("rental_id")

    if rental_id is not None:
        # Check for duplicate
        existing = (
            db.query(Notification)
            .filter(
                Notification.user_id == user_id,
                Notification.type == notification_type,
                Notification.rental_id == rental_id,
            )
            .first()
        )
        if existing:
            logger.info(
                f"Skipping duplicate {notification_type} notification "
                f"for user {user_id} rental {rental_id}"
            )
            return None

    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title or default_title,
        body=body or default_body,
        read=False,
        payload=metadata,
        rental_id=rental_id,
    )
    db.add(notification)
    return notification


def list_notifications(
    db: Session, user_id: int, unread_only: bool = False, limit: int = 50
) -> List[Notification]:
    """List a user's notifications, newest first."""
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read == False)  # noqa: E712
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(db: Session, user_id: int) -> int:
    """Count a user's unread notifications."""
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
        .count()
    )


def mark_read(db: Session, user_id: int, notification_id: int) -> Notification:
    """Mark one of the user's notifications as read."""
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise NotFoundError("Notification not found")

    notification.read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    """Mark every unread notification of the user as read.

    Returns:
        Number of notifications updated.
    """
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


def cleanup_read_notifications(db: Session, retention_days: int) -> dict:
    """Delete read notifications older than the retention window."""
    cutoff = datetime.utcnow() - timedelta(days=retention_days)
    deleted = (
        db.query(Notification)
        .filter(Notification.read == True, Notification.created_at < cutoff)  # noqa: E712
        .delete(synchronize_session=False)
    )
    db.commit()
    return {"notifications_deleted": deleted}
