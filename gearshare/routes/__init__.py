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

"""API routes package."""

from fastapi import APIRouter

from gearshare.routes import equipment, notifications, payments, rentals

api_router = APIRouter()

api_router.include_router(equipment.router, tags=["Equipment"])
api_router.include_router(rentals.router, tags=["Rentals"])
api_router.include_router(notifications.router, tags=["Notifications"])
api_router.include_router(payments.router, tags=["Payments"])

__all__ = ["api_router"]
