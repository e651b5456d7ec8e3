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

"""Payment processor client (Stripe REST API over httpx)."""

import logging
from typing import Any, Dict, Optional

import httpx

from gearshare.config import get_settings
from gearshare.errors import UpstreamPaymentError

logger = logging.getLogger(__name__)


def encode_form(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """Flatten nested params into Stripe's bracketed form encoding.

    {"metadata": {"rental_id": 5}} becomes {"metadata[rental_id]": "5"}.
    """
    encoded = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            encoded.update(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_name = f"{name}[{index}]"
                if isinstance(item, dict):
                    encoded.update(encode_form(item, item_name))
                else:
                    encoded[item_name] = str(item)
        elif isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        else:
            encoded[name] = str(value)
    return encoded


class StripeClient:
    """Minimal client for the payment intent and checkout endpoints."""

    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _post(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST form-encoded params and return the decoded JSON body."""
        if not self.secret_key:
            raise UpstreamPaymentError("Payment processor is not configured")

        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http_client:
                response = await http_client.post(
                    f"{self.api_base}{path}",
                    data=encode_form(params or {}),
                    headers=headers,
                )
        except httpx.HTTPError as e:
            logger.error(f"Payment processor request to {path} failed: {e}")
            raise UpstreamPaymentError("Payment processor unavailable, please try again")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            error = payload.get("error") or {}
            message = error.get("message") or f"Payment processor error ({response.status_code})"
            code = error.get("decline_code") or error.get("code")
            logger.warning(f"Payment processor rejected {path}: {response.status_code} {message}")
            raise UpstreamPaymentError(message, processor_code=code)

        return payload

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        payment_method: Optional[str],
        metadata: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create an unconfirmed payment intent; the client confirms it."""
        params = {
            "amount": amount,
            "currency": currency,
            "payment_method": payment_method,
            "confirm": False,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        return await self._post("/payment_intents", params, idempotency_key)

    async def create_checkout_session(
        self,
        amount: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a hosted checkout session for a single line item."""
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": product_name},
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            # Lets payment_intent.* events carry the rental id too
            "payment_intent_data": {"metadata": metadata},
        }
        return await self._post("/checkout/sessions", params, idempotency_key)

    async def cancel_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """Cancel a payment intent that will never be confirmed."""
        return await self._post(f"/payment_intents/{payment_intent_id}/cancel")

    async def expire_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """Expire an open checkout session so it can no longer be paid."""
        return await self._post(f"/checkout/sessions/{session_id}/expire")


def get_payment_client() -> StripeClient:
    """Dependency returning a client built from current settings."""
    settings = get_settings()
    return StripeClient(
        secret_key=settings.payment.secret_key,
        api_base=settings.payment.provider_api_base,
        timeout=settings.payment.request_timeout_seconds,
    )
