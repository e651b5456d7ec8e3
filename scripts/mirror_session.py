#!/usr/bin/env python3
# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Mirror a user session from the auth platform.

Usage:
    mirror_session.py EMAIL [--name NAME] [--role admin|owner|renter]
                            [--token TOKEN] [--days N]

Prints the bearer token the API will accept for that user.
"""

import argparse
import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gearshare.config import init_settings
from gearshare.database import get_session_local
from gearshare.middleware.auth import mirror_user_session
from gearshare.models.user import ROLE_ADMIN, ROLE_OWNER, ROLE_RENTER

ROLES = {"admin": ROLE_ADMIN, "owner": ROLE_OWNER, "renter": ROLE_RENTER}


def main():
    """Store the session and print its token."""
    parser = argparse.ArgumentParser(description="Mirror a platform user session")
    parser.add_argument("email")
    parser.add_argument("--name")
    parser.add_argument("--role", choices=sorted(ROLES))
    parser.add_argument("--token", help="Token issued by the auth platform")
    parser.add_argument("--days", type=int)
    args = parser.parse_args()

    init_settings(os.environ.get("GEARSHARE_CONFIG"))

    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        auth_token = mirror_user_session(
            db,
            args.email,
            full_name=args.name,
            role_id=ROLES.get(args.role),
            token=args.token,
            days=args.days,
        )
        print(auth_token.token)
    finally:
        db.close()


if __name__ == "__main__":
    main()
