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

"""Middleware package."""

from gearshare.middleware.auth import (
    can_view_rental,
    get_current_user,
    is_equipment_owner,
)
from gearshare.middleware.cors import ScopedCORSMiddleware

__all__ = [
    "get_current_user",
    "is_equipment_owner",
    "can_view_rental",
    "ScopedCORSMiddleware",
]
