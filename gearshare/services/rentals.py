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

"""Rental record manager.

Owns the rental status state machine and the equipment reservation hold.
Both are guarded with conditional updates so concurrent requests cannot
double-book equipment or apply two transitions from the same status.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from gearshare.config import get_settings
from gearshare.errors import InvalidStateTransition, NotFoundError, ValidationError
from gearshare.models.equipment import EQUIPMENT_AVAILABLE, EQUIPMENT_RENTED, Equipment
from gearshare.models.rental import (
    RENTAL_CANCELLED,
    RENTAL_COMPLETED,
    RENTAL_CONFIRMED,
    RENTAL_PAID,
    RENTAL_PAYMENT_FAILED,
    RENTAL_PENDING,
    RENTAL_STATUSES,
    Rental,
)
from gearshare.services.notifications import emit_notification
from gearshare.services.pricing import rental_duration_days, to_money, to_utc

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    RENTAL_PENDING: {RENTAL_CONFIRMED, RENTAL_PAID, RENTAL_PAYMENT_FAILED, RENTAL_CANCELLED},
    RENTAL_CONFIRMED: {RENTAL_COMPLETED, RENTAL_CANCELLED},
}

# Progress of a rental; a webhook never moves a rental to a lower rank
STATUS_RANK = {
    RENTAL_PENDING: 0,
    RENTAL_CONFIRMED: 1,
    RENTAL_PAID: 2,
    RENTAL_PAYMENT_FAILED: 2,
    RENTAL_COMPLETED: 3,
    RENTAL_CANCELLED: 3,
}

# Statuses counted as active on the owner dashboard
ACTIVE_STATUSES = (RENTAL_PENDING, RENTAL_CONFIRMED, RENTAL_PAID)

# Entering one of these gives the equipment back
RELEASING_STATUSES = (RENTAL_PAYMENT_FAILED, RENTAL_CANCELLED, RENTAL_COMPLETED)


def can_transition(current: str, new_status: str) -> bool:
    """Check whether a rental may move from current to new_status."""
    return new_status in ALLOWED_TRANSITIONS.get(current, set())


def is_downgrade(current: str, new_status: str) -> bool:
    """Check whether new_status would move a rental backwards."""
    return STATUS_RANK[new_status] <= STATUS_RANK[current] and new_status != current


def get_rental(db: Session, rental_id: int) -> Rental:
    """Get a rental by id or raise NotFoundError."""
    rental = db.query(Rental).filter(Rental.id == rental_id).first()
    if not rental:
        raise NotFoundError("Rental not found")
    return rental


def find_rental_by_payment_intent(db: Session, payment_intent_id: str) -> Optional[Rental]:
    """Look up a rental by the processor's payment intent id."""
    if not payment_intent_id:
        return None
    return db.query(Rental).filter(Rental.payment_intent_id == payment_intent_id).first()


def reserve_equipment(db: Session, equipment_id: int) -> bool:
    """Flip equipment from available to rented.

    Returns:
        True if this call won the hold, False if the equipment was not
        available.
    """
    updated = (
        db.query(Equipment)
        .filter(Equipment.id == equipment_id, Equipment.status == EQUIPMENT_AVAILABLE)
        .update({Equipment.status: EQUIPMENT_RENTED})
    )
    return updated == 1


def _holding_rentals(db: Session, equipment_id: int, now: datetime):
    """Rentals that still keep the equipment marked as rented at now.

    A pending rental holds until it expires or moves on. A confirmed or paid
    rental holds until its end date has passed.
    """
    return db.query(Rental).filter(
        Rental.equipment_id == equipment_id,
        or_(
            Rental.status == RENTAL_PENDING,
            and_(Rental.status.in_((RENTAL_CONFIRMED, RENTAL_PAID)), Rental.end_date > now),
        ),
    )


def release_equipment(
    db: Session,
    equipment_id: int,
    exclude_rental_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Flip equipment from rented back to available.

    Nothing happens while another rental still holds the equipment.
    """
    holders = _holding_rentals(db, equipment_id, now or datetime.utcnow())
    if exclude_rental_id is not None:
        holders = holders.filter(Rental.id != exclude_rental_id)
    if holders.first():
        return False

    updated = (
        db.query(Equipment)
        .filter(Equipment.id == equipment_id, Equipment.status == EQUIPMENT_RENTED)
        .update({Equipment.status: EQUIPMENT_AVAILABLE})
    )
    return updated == 1


def release_ended_rentals(
    db: Session,
    now: Optional[datetime] = None,
    equipment_id: Optional[int] = None,
) -> List[int]:
    """Give back equipment whose confirmed or paid rentals have all ended.

    The rentals keep their status; only the equipment flag changes. Does not
    commit.

    Returns:
        Ids of the equipment made available again.
    """
    now = now or datetime.utcnow()
    query = (
        db.query(Rental.equipment_id)
        .join(Equipment, Equipment.id == Rental.equipment_id)
        .filter(
            Equipment.status == EQUIPMENT_RENTED,
            Rental.status.in_((RENTAL_CONFIRMED, RENTAL_PAID)),
            Rental.end_date <= now,
        )
        .distinct()
    )
    if equipment_id is not None:
        query = query.filter(Rental.equipment_id == equipment_id)

    released = [eid for (eid,) in query.all() if release_equipment(db, eid, now=now)]
    if released:
        logger.info(f"Released equipment {released} after their rentals ended")
    return released


def create_pending(
    db: Session,
    equipment_id: int,
    user_id: int,
    start_date,
    end_date,
    total_price,
    billing_details: Optional[dict] = None,
    currency: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Rental:
    """Create a pending rental and put a reservation hold on the equipment.

    The rental is flushed but not committed; the caller owns the transaction.

    Raises:
        ValidationError: Bad dates or price, or equipment not available.
        NotFoundError: Equipment does not exist.
    """
    settings = get_settings()
    now = now or datetime.utcnow()

    start_utc = to_utc(start_date)
    end_utc = to_utc(end_date)
    days = rental_duration_days(start_utc, end_utc)
    if days > settings.rental.max_duration_days:
        raise ValidationError(
            f"Rental duration cannot exceed {settings.rental.max_duration_days} days"
        )

    price = to_money(total_price)
    if price < 0:
        raise ValidationError("Total price cannot be negative")

    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not equipment:
        raise NotFoundError("Equipment not found")

    # Lazy expiry so an abandoned checkout does not block this booking
    expire_stale_holds(db, now=now, equipment_id=equipment_id)
    release_ended_rentals(db, now=now, equipment_id=equipment_id)

    if not reserve_equipment(db, equipment_id):
        raise ValidationError(f"Equipment '{equipment.name}' is not available")

    rental = Rental(
        equipment_id=equipment_id,
        user_id=user_id,
        start_date=start_utc,
        end_date=end_utc,
        total_price=price,
        currency=currency or settings.payment.currency,
        status=RENTAL_PENDING,
        billing_details=billing_details,
        hold_expires_at=now + timedelta(minutes=settings.rental.reservation_ttl_minutes),
        created_at=now,
        updated_at=now,
    )
    db.add(rental)
    db.flush()

    logger.info(
        f"Created pending rental {rental.id} for equipment {equipment_id} "
        f"(user {user_id}, {days} days, {price})"
    )
    return rental


def transition(
    db: Session,
    rental_id: int,
    new_status: str,
    now: Optional[datetime] = None,
) -> Rental:
    """Move a rental to new_status.

    The update only applies if the status is still the one that was read,
    so two racing callers cannot both leave the same state.

    Raises:
        NotFoundError: Rental does not exist.
        InvalidStateTransition: The change is not in the allowed set.
    """
    if new_status not in RENTAL_STATUSES:
        raise ValidationError(f"Unknown rental status: {new_status}")

    now = now or datetime.utcnow()
    rental = get_rental(db, rental_id)
    current = rental.status

    if not can_transition(current, new_status):
        raise InvalidStateTransition(current, new_status)

    values = {Rental.status: new_status, Rental.updated_at: now}
    if current == RENTAL_PENDING:
        values[Rental.hold_expires_at] = None

    updated = (
        db.query(Rental)
        .filter(Rental.id == rental_id, Rental.status == current)
        .update(values)
    )
    if updated != 1:
        db.refresh(rental)
        raise InvalidStateTransition(rental.status, new_status)

    if new_status in RELEASING_STATUSES:
        release_equipment(db, rental.equipment_id, exclude_rental_id=rental.id, now=now)

    logger.info(f"Rental {rental_id}: {current} -> {new_status}")
    return rental


def expire_stale_holds(
    db: Session,
    now: Optional[datetime] = None,
    equipment_id: Optional[int] = None,
) -> List[Rental]:
    """Cancel pending rentals whose reservation hold has expired.

    Releases the equipment and notifies each renter. Does not commit.

    Returns:
        The rentals that were cancelled.
    """
    now = now or datetime.utcnow()
    query = db.query(Rental).filter(
        Rental.status == RENTAL_PENDING,
        Rental.hold_expires_at.isnot(None),
        Rental.hold_expires_at < now,
    )
    if equipment_id is not None:
        query = query.filter(Rental.equipment_id == equipment_id)

    expired = []
    for rental in query.all():
        try:
            transition(db, rental.id, RENTAL_CANCELLED, now=now)
        except InvalidStateTransition:
            # Another request moved it first
            continue
        emit_notification(
            db,
            rental.user_id,
            "rental_expired",
            metadata={"rental_id": rental.id, "equipment_id": rental.equipment_id},
        )
        expired.append(rental)

    if expired:
        logger.info(f"Expired {len(expired)} pending rental hold(s)")
    return expired


def list_rentals_for_user(db: Session, user_id: int, status: Optional[str] = None) -> List[Rental]:
    """List rentals booked by a user, newest first."""
    query = db.query(Rental).filter(Rental.user_id == user_id)
    if status:
        query = query.filter(Rental.status == status)
    return query.order_by(Rental.created_at.desc(), Rental.id.desc()).all()


def list_rentals_for_owner(db: Session, owner_id: int, status: Optional[str] = None) -> List[Rental]:
    """List rentals of equipment owned by a user, newest first."""
    query = (
        db.query(Rental)
        .join(Equipment, Equipment.id == Rental.equipment_id)
        .filter(Equipment.owner_id == owner_id)
    )
    if status:
        query = query.filter(Rental.status == status)
    return query.order_by(Rental.created_at.desc(), Rental.id.desc()).all()


def owner_summary(db: Session, owner_id: int) -> Dict:
    """Revenue and rental counts for an owner's dashboard."""
    rows = (
        db.query(Rental.status, func.count(Rental.id), func.sum(Rental.total_price))
        .join(Equipment, Equipment.id == Rental.equipment_id)
        .filter(Equipment.owner_id == owner_id)
        .group_by(Rental.status)
        .all()
    )

    by_status = {status: 0 for status in RENTAL_STATUSES}
    revenue = Decimal("0")
    for status, count, total in rows:
        by_status[status] = count
        if status == RENTAL_COMPLETED and total is not None:
            revenue = to_money(total)

    equipment_count = db.query(Equipment).filter(Equipment.owner_id == owner_id).count()

    return {
        "total_revenue": float(revenue),
        "active_rentals": sum(by_status[s] for s in ACTIVE_STATUSES),
        "equipment_count": equipment_count,
        "rentals_by_status": by_status,
    }
