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

import time
import unittest
from datetime import datetime

from gearshare.errors import SignatureInvalidError, UnknownRentalError, ValidationError
from gearshare.models.equipment import Equipment
from gearshare.models.notification import Notification
from gearshare.models.rental import PaymentEvent
from gearshare.services.webhooks import construct_event, reconcile_event, verify_signature
from tests.support import (
    WEBHOOK_SECRET,
    build_event,
    encode_event,
    make_equipment,
    make_owner,
    make_rental,
    make_session_factory,
    make_user,
    sign,
    use_test_settings,
)


class SignatureTests(unittest.TestCase):
    def setUp(self):
        self.payload = encode_event(build_event("evt_1", "payment_intent.succeeded", rental_id=1))
        self.now = 1_700_000_000

    def test_valid_signature(self):
        header = sign(self.payload, timestamp=self.now)
        self.assertEqual(verify_signature(self.payload, header, WEBHOOK_SECRET, now=self.now), self.now)

    def test_any_matching_v1_is_accepted(self):
        good = sign(self.payload, timestamp=self.now)
        header = f"t={self.now},v1=deadbeef,{good.split(',')[1]}"
        verify_signature(self.payload, header, WEBHOOK_SECRET, now=self.now)

    def test_tampered_body(self):
        header = sign(self.payload, timestamp=self.now)
        with self.assertRaises(SignatureInvalidError):
            verify_signature(self.payload + b" ", header, WEBHOOK_SECRET, now=self.now)

    def test_wrong_secret(self):
        header = sign(self.payload, secret="whsec_other", timestamp=self.now)
        with self.assertRaises(SignatureInvalidError):
            verify_signature(self.payload, header, WEBHOOK_SECRET, now=self.now)

    def test_old_timestamp(self):
        header = sign(self.payload, timestamp=self.now - 301)
        with self.assertRaises(SignatureInvalidError):
            verify_signature(self.payload, header, WEBHOOK_SECRET, now=self.now)

    def test_malformed_and_missing_headers(self):
        for header in ("", "garbage", f"t={self.now}", "v1=abc", "t=soon,v1=abc"):
            with self.assertRaises(SignatureInvalidError, msg=header):
                verify_signature(self.payload, header, WEBHOOK_SECRET, now=self.now)

    def test_missing_secret(self):
        header = sign(self.payload, timestamp=self.now)
        with self.assertRaises(SignatureInvalidError):
            verify_signature(self.payload, header, "", now=self.now)

    def test_construct_event_rejects_bad_json(self):
        payload = b"not json"
        with self.assertRaises(ValidationError):
            construct_event(payload, sign(payload), WEBHOOK_SECRET)

    def test_construct_event_requires_id_and_type(self):
        payload = b'{"type": "payment_intent.succeeded"}'
        with self.assertRaises(ValidationError):
            construct_event(payload, sign(payload), WEBHOOK_SECRET)

    def test_construct_event(self):
        event = construct_event(self.payload, sign(self.payload, timestamp=int(time.time())), WEBHOOK_SECRET)
        self.assertEqual(event["id"], "evt_1")


class ReconcileTests(unittest.TestCase):
    def setUp(self):
        use_test_settings()
        self.engine, self.SessionLocal = make_session_factory()
        self.db = self.SessionLocal()
        self.owner = make_owner(self.db)
        self.renter = make_user(self.db, "renter@example.com")
        self.equipment = make_equipment(self.db, self.owner, status="rented")
        self.rental = make_rental(
            self.db,
            self.equipment,
            self.renter,
            payment_intent_id="pi_test_1",
            hold_expires_at=datetime(2030, 1, 1),
        )

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _reconcile(self, event_id, event_type, rental_id="default", intent_id="pi_test_1"):
        if rental_id == "default":
            rental_id = self.rental.id
        return reconcile_event(self.db, build_event(event_id, event_type, rental_id, intent_id))

    def _status(self):
        self.db.refresh(self.rental)
        return self.rental.status

    def _notifications(self, notification_type):
        return self.db.query(Notification).filter(Notification.type == notification_type).all()

    def test_payment_succeeded_marks_rental_paid(self):
        result = self._reconcile("evt_1", "payment_intent.succeeded")

        self.assertEqual(result["outcome"], "applied")
        self.assertEqual(result["rental_status"], "paid")
        self.assertEqual(self._status(), "paid")
        self.assertEqual(self.rental.last_event_id, "evt_1")
        self.assertIsNone(self.rental.hold_expires_at)

        notifications = self._notifications("payment_succeeded")
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].user_id, self.renter.id)
        self.assertEqual(notifications[0].rental_id, self.rental.id)

    def test_redelivered_event_is_applied_once(self):
        self._reconcile("evt_1", "payment_intent.succeeded")
        result = self._reconcile("evt_1", "payment_intent.succeeded")

        self.assertEqual(result["outcome"], "duplicate")
        self.assertEqual(self._status(), "paid")
        self.assertEqual(len(self._notifications("payment_succeeded")), 1)
        self.assertEqual(self.db.query(PaymentEvent).count(), 1)

    def test_new_event_for_same_status_is_noop(self):
        self._reconcile("evt_1", "payment_intent.succeeded")
        result = self._reconcile("evt_2", "payment_intent.succeeded")

        self.assertEqual(result["outcome"], "duplicate")
        self.assertEqual(self._status(), "paid")
        self.assertEqual(self.rental.last_event_id, "evt_1")
        self.assertEqual(len(self._notifications("payment_succeeded")), 1)

    def test_failure_after_success_is_stale(self):
        self._reconcile("evt_1", "payment_intent.succeeded")
        result = self._reconcile("evt_2", "payment_intent.payment_failed")

        self.assertEqual(result["outcome"], "stale")
        self.assertEqual(self._status(), "paid")
        self.assertEqual(self._notifications("payment_failed"), [])

    def test_success_after_failure_is_stale_and_logged(self):
        self._reconcile("evt_1", "payment_intent.payment_failed")

        with self.assertLogs("gearshare.services.webhooks", level="ERROR"):
            result = self._reconcile("evt_2", "payment_intent.succeeded")

        self.assertEqual(result["outcome"], "stale")
        self.assertEqual(self._status(), "payment_failed")

    def test_checkout_completed_after_cancel_is_stale_and_logged(self):
        self.rental.status = "cancelled"
        self.db.commit()

        with self.assertLogs("gearshare.services.webhooks", level="ERROR") as logs:
            result = self._reconcile("evt_1", "checkout.session.completed")

        self.assertEqual(result["outcome"], "stale")
        self.assertEqual(self._status(), "cancelled")
        self.assertIn("manual refund", logs.output[0])
        self.assertIn("cs_test_1", logs.output[0])

    def test_payment_failed_releases_equipment(self):
        result = self._reconcile("evt_1", "payment_intent.payment_failed")

        self.assertEqual(result["outcome"], "applied")
        self.assertEqual(self._status(), "payment_failed")
        status = self.db.query(Equipment.status).filter(Equipment.id == self.equipment.id).scalar()
        self.assertEqual(status, "available")
        self.assertEqual(len(self._notifications("payment_failed")), 1)

    def test_checkout_completed_confirms_rental(self):
        self.rental.payment_intent_id = None
        self.db.commit()

        result = self._reconcile("evt_1", "checkout.session.completed", intent_id="pi_from_checkout")

        self.assertEqual(result["outcome"], "applied")
        self.assertEqual(self._status(), "confirmed")
        self.assertEqual(self.rental.payment_intent_id, "pi_from_checkout")
        self.assertEqual(self.rental.checkout_session_id, "cs_test_1")
        self.assertEqual(len(self._notifications("rental_confirmed")), 1)

    def test_lookup_falls_back_to_payment_intent_id(self):
        result = self._reconcile("evt_1", "payment_intent.succeeded", rental_id=None)

        self.assertEqual(result["rental_id"], self.rental.id)
        self.assertEqual(self._status(), "paid")

    def test_unknown_rental_is_recorded(self):
        with self.assertRaises(UnknownRentalError):
            self._reconcile("evt_1", "payment_intent.succeeded", rental_id=9999, intent_id="pi_unknown")

        event = self.db.query(PaymentEvent).filter(PaymentEvent.event_id == "evt_1").one()
        self.assertEqual(event.outcome, "unknown_rental")
        self.assertEqual(self._status(), "pending")

        result = self._reconcile("evt_1", "payment_intent.succeeded", rental_id=9999, intent_id="pi_unknown")
        self.assertEqual(result["outcome"], "duplicate")

    def test_unhandled_event_type_is_ignored(self):
        result = self._reconcile("evt_1", "customer.created")

        self.assertEqual(result["outcome"], "ignored")
        self.assertEqual(self._status(), "pending")


if __name__ == "__main__":
    unittest.main()
