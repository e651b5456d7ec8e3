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

"""Equipment model."""

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

EQUIPMENT_AVAILABLE = "available"
EQUIPMENT_RENTED = "rented"
EQUIPMENT_REPAIR = "repair"

EQUIPMENT_STATUSES = (EQUIPMENT_AVAILABLE, EQUIPMENT_RENTED, EQUIPMENT_REPAIR)
TRACKING_TYPES = ("bulk", "serial")


def _money(value):
    return float(value) if value is not None else None


class Equipment(Base):
    """Rentable equipment listing."""

    __tablename__ = "equipment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True, index=True)
    price_hour = Column(Numeric(10, 2), nullable=True)
    price_day = Column(Numeric(10, 2), nullable=False)
    price_week = Column(Numeric(10, 2), nullable=True)
    price_month = Column(Numeric(10, 2), nullable=True)
    location = Column(String(255), nullable=True)
    tracking_type = Column(String(20), nullable=False, default="bulk")
    quantity = Column(Integer, nullable=True)  # bulk tracking
    serial_code = Column(String(255), nullable=True)  # serial tracking
    images = Column(JSON, nullable=False, default=list)
    features = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default=EQUIPMENT_AVAILABLE, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'rented', 'repair')", name="ck_equipment_status"
        ),
        CheckConstraint("tracking_type IN ('bulk', 'serial')", name="ck_equipment_tracking"),
        CheckConstraint("price_day >= 0", name="ck_equipment_price_day"),
    )

    # Relationships
    owner = relationship("User", back_populates="equipment")
    rentals = relationship("Rental", back_populates="equipment")

    @property
    def is_available(self) -> bool:
        """Check if equipment can accept a new rental."""
        return self.status == EQUIPMENT_AVAILABLE

    def to_dict(self, include_owner: bool = True) -> dict:
        """Convert to dictionary."""
        result = {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_hour": _money(self.price_hour),
            "price_day": _money(self.price_day),
            "price_week": _money(self.price_week),
            "price_month": _money(self.price_month),
            "location": self.location,
            "tracking_type": self.tracking_type,
            "quantity": self.quantity,
            "serial_code": self.serial_code,
            "images": self.images or [],
            "features": self.features or [],
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_owner and self.owner:
            result["owner_name"] = self.owner.full_name
        return result

    def __repr__(self):
        return f"<Equipment(id={self.id}, name='{self.name}', status='{self.status}')>"
