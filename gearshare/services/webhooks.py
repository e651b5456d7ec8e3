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

"""Payment webhook verification and reconciliation.

Events arrive at least once and in no guaranteed order. Each event id is
recorded in the payment_events ledger so redelivery is a no-op, and a rental
only moves along the allowed transitions, so a late "payment failed" can
never overwrite "paid".
"""

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gearshare.errors import (
    InvalidStateTransition,
    SignatureInvalidError,
    UnknownRentalError,
    ValidationError,
)
from gearshare.models.rental import (
    RENTAL_CANCELLED,
    RENTAL_CONFIRMED,
    RENTAL_PAID,
    RENTAL_PAYMENT_FAILED,
    PaymentEvent,
    Rental,
)
from gearshare.services.notifications import emit_notification
from gearshare.services.rentals import can_transition, find_rental_by_payment_intent, is_downgrade, transition

logger = logging.getLogger(__name__)

# Maximum age of a webhook signature timestamp in seconds
DEFAULT_TOLERANCE_SECONDS = 300

# event type -> (rental status, notification type)
EVENT_TRANSITIONS = {
    "checkout.session.completed": (RENTAL_CONFIRMED, "rental_confirmed"),
    "payment_intent.succeeded": (RENTAL_PAID, "payment_succeeded"),
    "payment_intent.payment_failed": (RENTAL_PAYMENT_FAILED, "payment_failed"),
}

# A capture landing on a dropped rental must be refunded by hand
CAPTURED_STATUSES = (RENTAL_PAID, RENTAL_CONFIRMED)
DROPPED_STATUSES = (RENTAL_CANCELLED, RENTAL_PAYMENT_FAILED)

OUTCOME_APPLIED = "applied"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_STALE = "stale"
OUTCOME_UNKNOWN_RENTAL = "unknown_rental"
OUTCOME_IGNORED = "ignored"


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    """HMAC-SHA256 hex digest of "<timestamp>.<payload>"."""
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    signature_header: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> int:
    """Verify a processor signature header of the form "t=<ts>,v1=<hex>".

    Several v1 entries may be present while the secret is being rotated; any
    one matching is enough.

    Returns:
        The signed timestamp.

    Raises:
        SignatureInvalidError: Missing, malformed, mismatched or expired.
    """
    if not secret:
        raise SignatureInvalidError("Webhook secret is not configured")
    if not signature_header:
        raise SignatureInvalidError("Missing webhook signature")

    timestamp = None
    signatures = []
    for item in signature_header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)

    if not timestamp or not signatures:
        raise SignatureInvalidError("Malformed webhook signature header")

    try:
        signed_at = int(timestamp)
    except ValueError:
        raise SignatureInvalidError("Invalid webhook signature timestamp")

    expected = compute_signature(payload, signed_at, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise SignatureInvalidError("Webhook signature mismatch")

    current_time = time.time() if now is None else now
    if tolerance and abs(current_time - signed_at) > tolerance:
        raise SignatureInvalidError("Webhook timestamp outside the tolerance window")

    return signed_at


def construct_event(
    payload: bytes,
    signature_header: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """Verify the signature, then decode the event body."""
    verify_signature(payload, signature_header, secret, tolerance=tolerance, now=now)

    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Webhook body is not valid JSON")

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise ValidationError("Webhook event is missing id or type")
    return event


def _event_object(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    return data.get("object") or {}


def _rental_id_from_metadata(obj: Dict[str, Any]) -> Optional[int]:
    metadata = obj.get("metadata") or {}
    try:
        return int(metadata.get("rental_id"))
    except (TypeError, ValueError):
        return None


def _payment_intent_id(event_type: str, obj: Dict[str, Any]) -> Optional[str]:
    if event_type.startswith("payment_intent."):
        return obj.get("id")
    return obj.get("payment_intent")


def _find_rental(db: Session, event_type: str, obj: Dict[str, Any]) -> Optional[Rental]:
    rental_id = _rental_id_from_metadata(obj)
    if rental_id is not None:
        rental = db.query(Rental).filter(Rental.id == rental_id).first()
        if rental:
            return rental
    return find_rental_by_payment_intent(db, _payment_intent_id(event_type, obj))


def _record_event(db: Session, event: Dict[str, Any], rental_id: Optional[int], outcome: str) -> str:
    """Add the ledger row and commit.

    Returns:
        The outcome, or "duplicate" if another delivery of the same event
        committed first.
    """
    db.add(
        PaymentEvent(
            event_id=event["id"],
            event_type=event["type"],
            rental_id=rental_id,
            outcome=outcome,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Webhook event {event['id']} was processed concurrently, skipping")
        return OUTCOME_DUPLICATE
    return outcome


def _result(event: Dict[str, Any], outcome: str, rental: Optional[Rental] = None) -> Dict[str, Any]:
    return {
        "event_id": event["id"],
        "event_type": event["type"],
        "outcome": outcome,
        "rental_id": rental.id if rental else None,
        "rental_status": rental.status if rental else None,
    }


def reconcile_event(db: Session, event: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Apply a verified payment event to its rental.

    Returns:
        Dict with event_id, event_type, outcome, rental_id and rental_status.

    Raises:
        UnknownRentalError: No rental matches the event. The event is still
            recorded so redelivery short-circuits.
    """
    event_id = event["id"]
    event_type = event["type"]

    already = db.query(PaymentEvent).filter(PaymentEvent.event_id == event_id).first()
    if already:
        logger.info(f"Webhook event {event_id} already processed ({already.outcome}), skipping")
        return _result(event, OUTCOME_DUPLICATE)

    target = EVENT_TRANSITIONS.get(event_type)
    if target is None:
        logger.info(f"Ignoring webhook event {event_id} of type {event_type}")
        return _result(event, _record_event(db, event, None, OUTCOME_IGNORED))

    obj = _event_object(event)
    rental = _find_rental(db, event_type, obj)
    if rental is None:
        _record_event(db, event, _rental_id_from_metadata(obj), OUTCOME_UNKNOWN_RENTAL)
        raise UnknownRentalError(f"No rental found for webhook event {event_id} ({event_type})")

    new_status, notification_type = target
    current = rental.status

    if current == new_status:
        outcome = OUTCOME_DUPLICATE
        logger.info(f"Rental {rental.id} already {new_status}, event {event_id} is a no-op")
    elif not can_transition(current, new_status):
        outcome = OUTCOME_STALE
        reason = "downgrade" if is_downgrade(current, new_status) else "transition not allowed"
        logger.info(
            f"Ignoring stale event {event_id}: rental {rental.id} is {current}, "
            f"cannot move to {new_status} ({reason})"
        )
        if new_status in CAPTURED_STATUSES and current in DROPPED_STATUSES:
            logger.error(
                f"Payment captured for rental {rental.id} in status {current}; "
                f"{obj.get('object', 'object')} {obj.get('id')} "
                f"(intent {_payment_intent_id(event_type, obj)}) needs a manual refund"
            )
    else:
        try:
            transition(db, rental.id, new_status, now=now)
        except InvalidStateTransition as e:
            outcome = OUTCOME_STALE
            logger.info(f"Event {event_id} lost a race on rental {rental.id}: {e.message}")
        else:
            outcome = OUTCOME_APPLIED
            rental.last_event_id = event_id

            intent_id = _payment_intent_id(event_type, obj)
            if intent_id and not rental.payment_intent_id:
                rental.payment_intent_id = intent_id
            if event_type == "checkout.session.completed" and not rental.checkout_session_id:
                rental.checkout_session_id = obj.get("id")

            emit_notification(
                db,
                rental.user_id,
                notification_type,
                metadata={"rental_id": rental.id, "equipment_id": rental.equipment_id},
            )

    outcome = _record_event(db, event, rental.id, outcome)
    if outcome == OUTCOME_DUPLICATE:
        db.refresh(rental)
    return _result(event, outcome, rental)
