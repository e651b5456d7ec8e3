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

"""Rental and payment event models."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from gearshare.database import Base

RENTAL_PENDING = "pending"
RENTAL_CONFIRMED = "confirmed"
RENTAL_PAID = "paid"
RENTAL_PAYMENT_FAILED = "payment_failed"
RENTAL_COMPLETED = "completed"
RENTAL_CANCELLED = "cancelled"

RENTAL_STATUSES = (
    RENTAL_PENDING,
    RENTAL_CONFIRMED,
    RENTAL_PAID,
    RENTAL_PAYMENT_FAILED,
    RENTAL_COMPLETED,
    RENTAL_CANCELLED,
)


class Rental(Base):
    """Booking of one equipment item for a date range by one user.

    Equipment and user are referenced by id only; rentals are never deleted.
    """

    __tablename__ = "rentals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_date = Column(DateTime, nullable=False, index=True)  # UTC
    end_date = Column(DateTime, nullable=False, index=True)  # UTC
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="eur")
    status = Column(String(20), nullable=False, default=RENTAL_PENDING, index=True)
    payment_intent_id = Column(String(255), nullable=True, index=True)
    checkout_session_id = Column(String(255), nullable=True, index=True)
    billing_details = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    hold_expires_at = Column(DateTime, nullable=True, index=True)
    last_event_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'paid', 'payment_failed', "
            "'completed', 'cancelled')",
            name="ck_rental_status",
        ),
        CheckConstraint("end_date > start_date", name="ck_rental_dates"),
        CheckConstraint("total_price >= 0", name="ck_rental_total_price"),
    )

    # Relationships
    equipment = relationship("Equipment", back_populates="rentals")
    user = relationship("User", back_populates="rentals")

    def to_dict(self, include_user: bool = True, include_equipment: bool = True) -> dict:
        """Convert to dictionary."""
        result = {
            "id": self.id,
            "equipment_id": self.equipment_id,
            "user_id": self.user_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "total_price": float(self.total_price) if self.total_price is not None else None,
            "currency": self.currency,
            "status": self.status,
            "payment_intent_id": self.payment_intent_id,
            "billing_details": self.billing_details,
            "notes": self.notes,
            "hold_expires_at": self.hold_expires_at.isoformat() if self.hold_expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

        if include_user and self.user:
            result["user_name"] = self.user.full_name
            result["user_email"] = self.user.email

        if include_equipment and self.equipment:
            result["equipment_name"] = self.equipment.name
            result["equipment_location"] = self.equipment.location

        return result

    def __repr__(self):
        return (
            f"<Rental(id={self.id}, user_id={self.user_id}, "
            f"equipment_id={self.equipment_id}, status='{self.status}')>"
        )


class PaymentEvent(Base):
    """Ledger of payment processor webhook events already handled."""

    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    rental_id = Column(Integer, nullable=True, index=True)
    outcome = Column(String(50), nullable=False)  # applied, duplicate, stale, unknown_rental, ignored
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return (
            f"<PaymentEvent(event_id='{self.event_id}', type='{self.event_type}', "
            f"outcome='{self.outcome}')>"
        )
