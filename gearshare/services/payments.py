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

"""Payment intent bridge.

A checkout attempt is recorded locally (pending rental plus equipment hold)
before the processor is contacted. If the processor rejects the request the
rental is cancelled and the hold released. If the processor succeeds but the
intent id cannot be stored, the pending rental is left for the expiry sweep,
which also cancels the intent.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gearshare.config import get_settings
from gearshare.errors import (
    InvalidStateTransition,
    NotFoundError,
    PersistenceError,
    RentalError,
    UpstreamPaymentError,
    ValidationError,
)
from gearshare.models.equipment import Equipment
from gearshare.models.rental import RENTAL_CANCELLED, Rental
from gearshare.services.notifications import emit_notification
from gearshare.services.payment_client import StripeClient
from gearshare.services.pricing import calculate_total, rental_duration_days, to_minor_units, to_utc
from gearshare.services.rentals import create_pending, expire_stale_holds, release_ended_rentals, transition

logger = logging.getLogger(__name__)


async def cancel_processor_objects(client: StripeClient, rental: Rental) -> None:
    """Cancel the payment intent and expire the checkout session of a rental.

    Best effort: a processor failure is logged and the rental stays
    cancelled locally.
    """
    if rental.payment_intent_id:
        try:
            await client.cancel_payment_intent(rental.payment_intent_id)
        except UpstreamPaymentError as e:
            logger.warning(
                f"Could not cancel payment intent {rental.payment_intent_id} "
                f"for rental {rental.id}: {e.message}"
            )
    if rental.checkout_session_id:
        try:
            await client.expire_checkout_session(rental.checkout_session_id)
        except UpstreamPaymentError as e:
            logger.warning(
                f"Could not expire checkout session {rental.checkout_session_id} "
                f"for rental {rental.id}: {e.message}"
            )


async def release_expired_holds(
    db: Session,
    client: StripeClient,
    equipment_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Rental]:
    """Cancel expired pending rentals and their processor objects.

    Also gives back equipment whose confirmed or paid rentals have ended.
    """
    expired = expire_stale_holds(db, now=now, equipment_id=equipment_id)
    release_ended_rentals(db, now=now, equipment_id=equipment_id)
    db.commit()

    for rental in expired:
        await cancel_processor_objects(client, rental)
    return expired


def _open_rental(
    db: Session,
    equipment: Equipment,
    user_id: int,
    start_date,
    end_date,
    amount: int,
    billing_details: Optional[dict],
) -> int:
    """Price-check, create the pending rental, notify the owner and commit.

    Returns:
        The new rental id.
    """
    if amount <= 0:
        raise ValidationError("Amount must be a positive number of minor units")

    expected_total = calculate_total(start_date, end_date, equipment.price_day)
    if to_minor_units(expected_total) != amount:
        raise ValidationError(
            f"Amount {amount} does not match the rental price "
            f"{to_minor_units(expected_total)}"
        )

    try:
        rental = create_pending(
            db,
            equipment_id=equipment.id,
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            total_price=expected_total,
            billing_details=billing_details,
        )
        days = rental_duration_days(start_date, end_date)
        emit_notification(
            db,
            equipment.owner_id,
            "new_rental",
            metadata={
                "rental_id": rental.id,
                "equipment_id": equipment.id,
                "user_id": user_id,
            },
            body=f"New rental request for {days} day{'s' if days != 1 else ''}",
        )
        rental_id = rental.id
        db.commit()
    except RentalError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record rental for equipment {equipment.id}: {e}")
        raise PersistenceError("Could not record the rental, please try again")

    return rental_id


def _abandon_rental(db: Session, rental_id: int) -> None:
    """Cancel a rental whose payment could not be started."""
    try:
        transition(db, rental_id, RENTAL_CANCELLED)
        db.commit()
    except InvalidStateTransition:
        db.rollback()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to cancel rental {rental_id} after payment rejection: {e}")


def _attach_processor_ids(db: Session, rental_id: int, **fields) -> None:
    """Store processor references on the rental or raise PersistenceError."""
    try:
        db.query(Rental).filter(Rental.id == rental_id).update(fields)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Orphaned payment reference {fields} for rental {rental_id}, "
            f"manual reconciliation required: {e}"
        )
        raise PersistenceError("Payment was initiated but the rental could not be updated")


def _payment_metadata(rental_id: int, equipment_id: int, user_id: int, start_date, end_date) -> Dict[str, Any]:
    return {
        "rental_id": rental_id,
        "equipment_id": equipment_id,
        "user_id": user_id,
        "start_date": to_utc(start_date).isoformat(),
        "end_date": to_utc(end_date).isoformat(),
    }


def _get_equipment(db: Session, equipment_id: int) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not equipment:
        raise NotFoundError("Equipment not found")
    return equipment


async def create_payment_intent(
    db: Session,
    client: StripeClient,
    equipment_id: int,
    user_id: int,
    start_date,
    end_date,
    amount: int,
    payment_method: Optional[str] = None,
    billing_details: Optional[dict] = None,
) -> Dict[str, Any]:
    """Reserve equipment and create a payment intent for the rental.

    Args:
        db: Database session
        client: Payment processor client
        equipment_id: Equipment being rented
        user_id: Renter
        start_date: Rental start (ISO8601 string, date or datetime)
        end_date: Rental end
        amount: Charge in minor currency units; must match the computed price
        payment_method: Tokenized payment method reference
        billing_details: Billing snapshot stored on the rental

    Returns:
        Dict with client_secret, rental_id and payment_intent_id.

    Raises:
        ValidationError, NotFoundError: Nothing was written.
        UpstreamPaymentError: Processor rejected; rental cancelled.
        PersistenceError: Intent created but not linked to the rental.
    """
    settings = get_settings()
    equipment = _get_equipment(db, equipment_id)

    await release_expired_holds(db, client, equipment_id=equipment_id)

    rental_id = _open_rental(db, equipment, user_id, start_date, end_date, amount, billing_details)

    try:
        intent = await client.create_payment_intent(
            amount=amount,
            currency=settings.payment.currency,
            payment_method=payment_method,
            metadata=_payment_metadata(rental_id, equipment_id, user_id, start_date, end_date),
            idempotency_key=f"rental-{rental_id}",
        )
    except UpstreamPaymentError:
        _abandon_rental(db, rental_id)
        raise

    _attach_processor_ids(db, rental_id, payment_intent_id=intent["id"])

    logger.info(f"Payment intent {intent['id']} created for rental {rental_id}")
    return {
        "client_secret": intent.get("client_secret"),
        "rental_id": rental_id,
        "payment_intent_id": intent["id"],
    }


async def create_checkout_session(
    db: Session,
    client: StripeClient,
    equipment_id: int,
    user_id: int,
    start_date,
    end_date,
    amount: int,
    billing_details: Optional[dict] = None,
) -> Dict[str, Any]:
    """Reserve equipment and create a hosted checkout session for the rental.

    Returns:
        Dict with session id, checkout url and rental_id.
    """
    settings = get_settings()
    equipment = _get_equipment(db, equipment_id)

    await release_expired_holds(db, client, equipment_id=equipment_id)

    rental_id = _open_rental(db, equipment, user_id, start_date, end_date, amount, billing_details)
    frontend_url = settings.payment.frontend_url.rstrip("/")

    try:
        session = await client.create_checkout_session(
            amount=amount,
            currency=settings.payment.currency,
            product_name=f"Rental: {equipment.name}",
            success_url=f"{frontend_url}/rentals/{rental_id}?success=true",
            cancel_url=f"{frontend_url}/equipment/{equipment_id}",
            metadata=_payment_metadata(rental_id, equipment_id, user_id, start_date, end_date),
            idempotency_key=f"rental-checkout-{rental_id}",
        )
    except UpstreamPaymentError:
        _abandon_rental(db, rental_id)
        raise

    fields = {"checkout_session_id": session["id"]}
    if session.get("payment_intent"):
        fields["payment_intent_id"] = session["payment_intent"]
    _attach_processor_ids(db, rental_id, **fields)

    logger.info(f"Checkout session {session['id']} created for rental {rental_id}")
    return {"id": session["id"], "url": session.get("url"), "rental_id": rental_id}
