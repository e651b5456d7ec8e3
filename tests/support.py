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

"""Shared fixtures: in-memory database, fake processor, signed events."""

import json
import os
import time
from datetime import datetime, timedelta

os.environ.setdefault("GEARSHARE_DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gearshare.config import CorsConfig, PaymentConfig, RentalConfig, Settings, update_settings
from gearshare.database import create_tables, seed_defaults
from gearshare.errors import UpstreamPaymentError
from gearshare.models.equipment import Equipment
from gearshare.models.rental import Rental
from gearshare.models.user import ROLE_OWNER, ROLE_RENTER, User
from gearshare.services.webhooks import compute_signature

WEBHOOK_SECRET = "whsec_test_secret"
CHECKOUT_ORIGIN = "https://shop.example.com"


def use_test_settings() -> Settings:
    """Install settings suitable for tests and return them."""
    settings = Settings(
        payment=PaymentConfig(
            secret_key="sk_test_123",
            webhook_secret=WEBHOOK_SECRET,
            currency="eur",
            frontend_url="https://shop.example.com",
        ),
        cors=CorsConfig(checkout_origin=CHECKOUT_ORIGIN),
        rental=RentalConfig(reservation_ttl_minutes=30),
    )
    settings.database.url = "sqlite://"
    update_settings(settings)
    return settings


def make_session_factory():
    """Create a fresh in-memory database and return its session factory."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    create_tables(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = SessionLocal()
    try:
        seed_defaults(db)
    finally:
        db.close()
    return engine, SessionLocal


def make_user(db, email: str, role_id: int = ROLE_RENTER, full_name: str = None) -> User:
    user = User(email=email, full_name=full_name or email.split("@")[0], role_id=role_id)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_owner(db, email: str = "owner@example.com") -> User:
    return make_user(db, email, role_id=ROLE_OWNER)


def make_equipment(db, owner: User, price_day="50.00", status="available", name="Mini Excavator") -> Equipment:
    equipment = Equipment(
        owner_id=owner.id,
        name=name,
        description="1.5t tracked excavator",
        category="construction",
        price_day=price_day,
        location="Milan",
        tracking_type="serial",
        serial_code="EX-0001",
        status=status,
    )
    db.add(equipment)
    db.commit()
    db.refresh(equipment)
    return equipment


def make_rental(db, equipment: Equipment, user: User, status: str = "pending", **fields) -> Rental:
    """Insert a rental row directly, bypassing the reservation hold."""
    values = {
        "start_date": datetime(2025, 1, 1),
        "end_date": datetime(2025, 1, 4),
        "total_price": "150.00",
        "currency": "eur",
    }
    values.update(fields)
    rental = Rental(equipment_id=equipment.id, user_id=user.id, status=status, **values)
    db.add(rental)
    db.commit()
    db.refresh(rental)
    return rental


def build_event(event_id: str, event_type: str, rental_id=None, intent_id: str = "pi_test_1") -> dict:
    """Build a processor event envelope."""
    metadata = {"rental_id": str(rental_id)} if rental_id is not None else {}
    if event_type.startswith("checkout.session."):
        obj = {"id": "cs_test_1", "object": "checkout.session", "payment_intent": intent_id, "metadata": metadata}
    else:
        obj = {"id": intent_id, "object": "payment_intent", "metadata": metadata}
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Signature header for a payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}"


def encode_event(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


def rental_window(days: int = 3, start: datetime = None):
    """ISO8601 start and end strings spanning a number of days."""
    start = start or datetime(2030, 1, 1)
    return start.isoformat() + "Z", (start + timedelta(days=days)).isoformat() + "Z"


class FakePaymentClient:
    """In-memory stand-in for the processor client."""

    def __init__(self):
        self.intents = []
        self.sessions = []
        self.cancelled = []
        self.expired_sessions = []
        self.reject_with = None
        self.after_create = None

    async def create_payment_intent(self, amount, currency, payment_method, metadata, idempotency_key=None):
        if self.reject_with:
            raise UpstreamPaymentError(self.reject_with, processor_code="card_declined")
        number = len(self.intents) + 1
        intent = {
            "id": f"pi_test_{number}",
            "client_secret": f"pi_test_{number}_secret_abc",
            "amount": amount,
            "currency": currency,
            "payment_method": payment_method,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }
        self.intents.append(intent)
        if self.after_create:
            self.after_create()
        return intent

    async def create_checkout_session(
        self, amount, currency, product_name, success_url, cancel_url, metadata, idempotency_key=None
    ):
        if self.reject_with:
            raise UpstreamPaymentError(self.reject_with)
        number = len(self.sessions) + 1
        session = {
            "id": f"cs_test_{number}",
            "url": f"https://checkout.example/{number}",
            "payment_intent": None,
            "amount": amount,
            "product_name": product_name,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        self.sessions.append(session)
        return session

    async def cancel_payment_intent(self, payment_intent_id):
        self.cancelled.append(payment_intent_id)
        return {"id": payment_intent_id, "status": "canceled"}

    async def expire_checkout_session(self, session_id):
        self.expired_sessions.append(session_id)
        return {"id": session_id, "status": "expired"}
