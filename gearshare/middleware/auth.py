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

"""Authentication dependencies and access checks."""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from gearshare.config import get_settings
from gearshare.database import get_db
from gearshare.models.auth import AuthToken
from gearshare.models.user import ROLE_RENTER, User
from gearshare.utils.helpers import generate_token


def get_token_from_request(request: Request) -> Optional[str]:
    """Extract auth token from request cookies or header."""
    # Try cookie first
    token = request.cookies.get("auth_token")
    if token:
        return token

    # Try Authorization header
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]

    return None


async def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get the current authenticated user.

    Raises HTTPException if not authenticated.
    """
    token = get_token_from_request(request)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    auth_token = db.query(AuthToken).filter(AuthToken.token == token).first()

    if not auth_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    if not auth_token.is_valid():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token expired or revoked",
        )

    user = auth_token.user

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    # Update last used timestamp
    auth_token.last_used_at = datetime.utcnow()
    db.commit()

    return user


def is_equipment_owner(user: User, equipment) -> bool:
    """Check if user owns the equipment (admins own everything)."""
    return user.is_admin or equipment.owner_id == user.id


def can_view_rental(user: User, rental) -> bool:
    """Renter, equipment owner and admins may see a rental."""
    if user.is_admin or rental.user_id == user.id:
        return True
    return rental.equipment is not None and rental.equipment.owner_id == user.id


def create_auth_token(
    db: Session,
    user: User,
    token: Optional[str] = None,
    days: Optional[int] = None,
) -> AuthToken:
    """Store a bearer token for a user session.

    A token issued by the auth platform is stored as given; otherwise a new
    random one is generated.
    """
    settings = get_settings()
    auth_token = AuthToken(
        user_id=user.id,
        token=token or generate_token(),
        expires_at=datetime.utcnow() + timedelta(days=days or settings.security.auth_token_days),
    )
    db.add(auth_token)
    db.commit()
    db.refresh(auth_token)
    return auth_token


def mirror_user_session(
    db: Session,
    email: str,
    full_name: Optional[str] = None,
    role_id: Optional[int] = None,
    token: Optional[str] = None,
    days: Optional[int] = None,
) -> AuthToken:
    """Mirror a platform user and their session token into this database.

    The user is created on first sight and their name and role are kept in
    sync afterwards.
    """
    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, full_name=full_name or email.split("@")[0], role_id=role_id or ROLE_RENTER)
        db.add(user)
    else:
        if full_name:
            user.full_name = full_name
        if role_id:
            user.role_id = role_id
    db.flush()

    return create_auth_token(db, user, token=token, days=days)
