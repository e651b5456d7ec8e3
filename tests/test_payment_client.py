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

import unittest
from urllib.parse import parse_qs

import httpx

from gearshare.errors import UpstreamPaymentError
from gearshare.services.payment_client import StripeClient, encode_form


class EncodeFormTests(unittest.TestCase):
    def test_nested_values(self):
        encoded = encode_form(
            {
                "amount": 15000,
                "confirm": False,
                "payment_method": None,
                "metadata": {"rental_id": 5},
                "line_items": [{"quantity": 1}],
                "payment_method_types": ["card"],
            }
        )

        self.assertEqual(
            encoded,
            {
                "amount": "15000",
                "confirm": "false",
                "metadata[rental_id]": "5",
                "line_items[0][quantity]": "1",
                "payment_method_types[0]": "card",
            },
        )


class StripeClientTests(unittest.IsolatedAsyncioTestCase):
    def _client(self, handler, secret_key="sk_test_123"):
        return StripeClient(secret_key, api_base="https://api.test/v1", transport=httpx.MockTransport(handler))

    async def test_create_payment_intent_sends_form_and_headers(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret"})

        intent = await self._client(handler).create_payment_intent(
            amount=15000,
            currency="eur",
            payment_method="pm_card_visa",
            metadata={"rental_id": 7},
            idempotency_key="rental-7",
        )

        self.assertEqual(intent["id"], "pi_1")
        self.assertEqual(seen["url"], "https://api.test/v1/payment_intents")
        self.assertEqual(seen["headers"]["authorization"], "Bearer sk_test_123")
        self.assertEqual(seen["headers"]["idempotency-key"], "rental-7")
        self.assertEqual(seen["form"]["amount"], ["15000"])
        self.assertEqual(seen["form"]["metadata[rental_id]"], ["7"])
        self.assertEqual(seen["form"]["automatic_payment_methods[enabled]"], ["true"])

    async def test_expire_checkout_session(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": "cs_1", "status": "expired"})

        session = await self._client(handler).expire_checkout_session("cs_1")

        self.assertEqual(session["status"], "expired")
        self.assertEqual(seen["method"], "POST")
        self.assertEqual(seen["url"], "https://api.test/v1/checkout/sessions/cs_1/expire")

    async def test_card_error_is_mapped(self):
        def handler(request):
            return httpx.Response(
                402,
                json={"error": {"message": "Your card was declined.", "code": "card_declined", "decline_code": "insufficient_funds"}},
            )

        with self.assertRaises(UpstreamPaymentError) as ctx:
            await self._client(handler).create_payment_intent(100, "eur", None, {})

        self.assertEqual(ctx.exception.message, "Your card was declined.")
        self.assertEqual(ctx.exception.processor_code, "insufficient_funds")
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_server_error_without_body(self):
        def handler(request):
            return httpx.Response(503, content=b"upstream down")

        with self.assertRaises(UpstreamPaymentError) as ctx:
            await self._client(handler).cancel_payment_intent("pi_1")

        self.assertIn("503", ctx.exception.message)

    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(UpstreamPaymentError):
            await self._client(handler).cancel_payment_intent("pi_1")

    async def test_unconfigured_client(self):
        def handler(request):
            raise AssertionError("no request expected")

        with self.assertRaises(UpstreamPaymentError):
            await self._client(handler, secret_key="").cancel_payment_intent("pi_1")


if __name__ == "__main__":
    unittest.main()
