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

"""Domain errors raised by the rental and payment workflow."""


class RentalError(Exception):
    """Base class for workflow errors rendered as JSON error payloads."""

    status_code = 400
    code = "rental_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Convert to error payload."""
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(RentalError):
    """Bad input or equipment not available for booking."""

    code = "validation_error"


class NotFoundError(RentalError):
    """Referenced equipment, rental or notification does not exist."""

    status_code = 404
    code = "not_found"


class InvalidStateTransition(RentalError):
    """Requested rental status change is not allowed."""

    status_code = 409
    code = "invalid_state_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change rental status from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class UpstreamPaymentError(RentalError):
    """Payment processor rejected the request."""

    code = "payment_rejected"

    def __init__(self, message: str, processor_code: str = None):
        super().__init__(message)
        self.processor_code = processor_code


class PersistenceError(RentalError):
    """Local write failed after the payment processor accepted the request."""

    status_code = 500
    code = "persistence_error"


class SignatureInvalidError(RentalError):
    """Webhook signature did not verify."""

    code = "signature_invalid"


class UnknownRentalError(RentalError):
    """Webhook event references a rental that does not exist."""

    status_code = 200
    code = "unknown_rental"
