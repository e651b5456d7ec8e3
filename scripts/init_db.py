#!/usr/bin/env python3
# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Create the GearShare tables and seed roles and sweep jobs."""

import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gearshare.config import init_settings
from gearshare.database import get_database_url, init_database


def main():
    """Initialize the database."""
    settings = init_settings(os.environ.get("GEARSHARE_CONFIG"))
    print(f"Initializing GearShare database at {get_database_url()}...")

    init_database()

    if not settings.payments_configured:
        print("Warning: payment processor keys are not set, checkout will be rejected")

    print("Database initialization complete!")


if __name__ == "__main__":
    main()
