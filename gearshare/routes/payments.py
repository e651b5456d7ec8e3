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

"""Payment routes: checkout entry points and the processor webhook."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from gearshare.config import get_settings
from gearshare.database import get_db
from gearshare.errors import SignatureInvalidError, UnknownRentalError, ValidationError
from gearshare.middleware.auth import get_current_user
from gearshare.models.user import User
from gearshare.services import payments
from gearshare.services.payment_client import StripeClient, get_payment_client
from gearshare.services.webhooks import construct_event, reconcile_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments")


class CheckoutRequest(BaseModel):
    """Checkout request as sent by the rental checkout form."""

    model_config = ConfigDict(populate_by_name=True)

    amount: int  # minor currency units
    equipment_id: int = Field(alias="equipmentId")
    user_id: int = Field(alias="userId")
    start_date: str = Field(alias="startDate")  # ISO8601
    end_date: str = Field(alias="endDate")  # ISO8601
    billing_details: Optional[dict] = Field(default=None, alias="billingDetails")


class PaymentIntentRequest(CheckoutRequest):
    """Payment intent request."""

    payment_method: Optional[str] = None


def _check_renter(data: CheckoutRequest, current_user: User) -> None:
    if data.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot start a checkout for another user",
        )


@router.post("/create-payment-intent")
async def create_payment_intent(
    data: PaymentIntentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: StripeClient = Depends(get_payment_client),
):
    """Reserve the equipment and return a client secret to confirm payment."""
    _check_renter(data, current_user)

    result = await payments.create_payment_intent(
        db,
        client,
        equipment_id=data.equipment_id,
        user_id=data.user_id,
        start_date=data.start_date,
        end_date=data.end_date,
        amount=data.amount,
        payment_method=data.payment_method,
        billing_details=data.billing_details,
    )

    return {
        "clientSecret": result["client_secret"],
        "rentalId": result["rental_id"],
        "paymentIntentId": result["payment_intent_id"],
    }


@router.post("/create-checkout-session")
async def create_checkout_session(
    data: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: StripeClient = Depends(get_payment_client),
):
    """Reserve the equipment and return a hosted checkout session."""
    _check_renter(data, current_user)

    result = await payments.create_checkout_session(
        db,
        client,
        equipment_id=data.equipment_id,
        user_id=data.user_id,
        start_date=data.start_date,
        end_date=data.end_date,
        amount=data.amount,
        billing_details=data.billing_details,
    )

    return {"id": result["id"], "url": result["url"], "rentalId": result["rental_id"]}


@router.post("/webhook")
async def handle_payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """Verify and apply a payment processor event.

    Always acknowledges verified events, including malformed ones and ones
    that reference an unknown rental, so the processor stops retrying them.
    """
    settings = get_settings()

    # Raw body is required for signature verification
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = construct_event(
            payload,
            signature,
            settings.payment.webhook_secret,
            tolerance=settings.payment.webhook_tolerance_seconds,
        )
    except SignatureInvalidError as e:
        logger.warning(f"Rejected payment webhook: {e.message}")
        raise
    except ValidationError as e:
        logger.warning(f"Acknowledging unusable payment webhook: {e.message}")
        return {"received": True, "outcome": "ignored"}

    try:
        result = reconcile_event(db, event)
    except UnknownRentalError as e:
        logger.warning(e.message)
        return {"received": True, "outcome": "unknown_rental"}

    return {"received": True, "outcome": result["outcome"]}
