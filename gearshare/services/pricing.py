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

"""Rental pricing.

All instants are normalized to naive UTC before any arithmetic: aware
datetimes are converted to UTC, naive datetimes are taken as UTC already and
bare dates mean UTC midnight. Duration is the number of started days, so a
rental of one day and one hour is billed as two days.
"""

import math
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from gearshare.errors import ValidationError

SECONDS_PER_DAY = 86400
CENT = Decimal("0.01")

DateLike = Union[str, date, datetime]


def to_utc(value: DateLike) -> datetime:
    """Normalize a date, datetime or ISO8601 string to a naive UTC datetime."""
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid ISO8601 date: {value!r}")

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    raise ValidationError(f"Unsupported date value: {value!r}")


def to_money(value) -> Decimal:
    """Convert a rate or amount to a Decimal rounded to cents."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def rental_duration_days(start: DateLike, end: DateLike) -> int:
    """Number of billable days between start and end.

    Raises:
        ValidationError: If end is not after start.
    """
    start_utc = to_utc(start)
    end_utc = to_utc(end)
    if end_utc <= start_utc:
        raise ValidationError("End date must be after start date")

    seconds = (end_utc - start_utc).total_seconds()
    return math.ceil(seconds / SECONDS_PER_DAY)


def calculate_total(start: DateLike, end: DateLike, daily_rate) -> Decimal:
    """Total price for renting at daily_rate between start and end."""
    rate = to_money(daily_rate)
    if rate < 0:
        raise ValidationError("Daily rate cannot be negative")
    days = rental_duration_days(start, end)
    return to_money(rate * days)


def to_minor_units(amount) -> int:
    """Convert an amount to the processor's smallest currency unit."""
    return int(to_money(amount) * 100)


def from_minor_units(units: int) -> Decimal:
    """Convert smallest currency units back to an amount."""
    return to_money(Decimal(int(units)) / 100)


def quote(equipment, start: DateLike, end: DateLike) -> dict:
    """Price breakdown for renting equipment between start and end."""
    days = rental_duration_days(start, end)
    total = calculate_total(start, end, equipment.price_day)
    return {
        "equipment_id": equipment.id,
        "start_date": to_utc(start).isoformat(),
        "end_date": to_utc(end).isoformat(),
        "days": days,
        "daily_rate": float(to_money(equipment.price_day)),
        "total_price": float(total),
        "amount": to_minor_units(total),
    }
